import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from autopay_bridge.config import Settings, get_settings
from autopay_bridge.database import get_db
from autopay_bridge.dependencies import get_provisioner, get_reconciler, raw_body
from autopay_bridge.errors import AuthenticationFailure, UpstreamFailure
from autopay_bridge.handlers import handle_order_created, handle_payment_event
from autopay_bridge.provisioning import SubscriptionProvisioner
from autopay_bridge.reconciliation import PaymentReconciler
from autopay_bridge.schemas import RazorpayEvent
from autopay_bridge.shopify_service import ShopifyAdminFactory, get_shopify_factory
from autopay_bridge.signatures import require_valid, verify_razorpay_signature, verify_shopify_hmac

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/razorpay")
def razorpay_webhook(
    payload: bytes = Depends(raw_body),
    x_razorpay_signature: str = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    try:
        require_valid(verify_razorpay_signature(payload, x_razorpay_signature, settings.webhook_secret), "Razorpay")
    except AuthenticationFailure as e:
        logger.warning("%s", e)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        data = json.loads(payload)
    except ValueError:
        logger.error("Razorpay webhook body is not valid JSON")
        raise HTTPException(status_code=500, detail="Invalid payload")

    try:
        event = RazorpayEvent.model_validate(data)
    except ValidationError as e:
        logger.warning("Razorpay webhook without an event type: %s", e)
        return {"ok": True, "outcome": "ignored"}

    logger.info("Received Razorpay webhook: %s", event.event)
    try:
        outcome = handle_payment_event(db, event, reconciler)
    except Exception:
        logger.exception("Error processing Razorpay webhook %s", event.event)
        raise HTTPException(status_code=500, detail="Error")

    return {"ok": True, "outcome": outcome}


@router.post("/orders/create")
def orders_create_webhook(
    payload: bytes = Depends(raw_body),
    x_shopify_hmac_sha256: str = Header(None),
    x_shopify_shop_domain: str = Header(None),
    x_shopify_topic: str = Header("orders/create"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    shopify: ShopifyAdminFactory = Depends(get_shopify_factory),
    provisioner: SubscriptionProvisioner = Depends(get_provisioner),
):
    try:
        require_valid(verify_shopify_hmac(payload, x_shopify_hmac_sha256, settings.shopify_api_secret), "Shopify")
    except AuthenticationFailure as e:
        logger.warning("%s from %s", e, x_shopify_shop_domain)
        raise HTTPException(status_code=401, detail="Invalid signature")

    shop = x_shopify_shop_domain
    logger.info("Received %s webhook for %s", x_shopify_topic, shop)

    admin = shopify.for_shop(db, shop) if shop else None
    if admin is None:
        logger.info("Admin API not available for %s", shop)
        return {"ok": True, "outcome": "no_session"}

    try:
        body = json.loads(payload)
    except ValueError:
        logger.error("Order webhook body from %s is not valid JSON", shop)
        raise HTTPException(status_code=500, detail="Invalid payload")

    order_id = body.get("admin_graphql_api_id") if isinstance(body, dict) else None
    if not order_id:
        logger.info("No order ID found in webhook payload")
        return {"ok": True, "outcome": "ignored"}

    try:
        outcome = handle_order_created(db, shop, order_id, admin, provisioner, settings.shopify_app_handle)
    except UpstreamFailure as e:
        logger.error("Provisioning failed for order %s on %s: %s", order_id, shop, e)
        raise HTTPException(status_code=500, detail="Error")
    except Exception:
        logger.exception("Error processing order webhook for %s", order_id)
        raise HTTPException(status_code=500, detail="Error")

    return {"ok": True, "outcome": outcome}
