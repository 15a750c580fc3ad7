"""Operator endpoints: inspect the reconciliation cache and replay missed charges."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from autopay_bridge import store
from autopay_bridge.auth import verify_token
from autopay_bridge.database import get_db
from autopay_bridge.dependencies import get_reconciler
from autopay_bridge.errors import DuplicateEvent, GatewayError
from autopay_bridge.models import SubscriptionMapping
from autopay_bridge.razorpay_service import RazorpayGateway, get_gateway
from autopay_bridge.reconciliation import PaymentReconciler
from autopay_bridge.schemas import (
    PaymentEntity,
    PaymentRecordOut,
    SubscriptionDetailOut,
    SubscriptionMappingOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_token)], tags=["admin"])


@router.get("/subscriptions", response_model=List[SubscriptionMappingOut])
def list_subscriptions(shop: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(SubscriptionMapping)
    if shop:
        query = query.filter_by(shop=shop)
    return query.order_by(SubscriptionMapping.created_at.desc()).all()


@router.get("/subscriptions/{razorpay_subscription_id}", response_model=SubscriptionDetailOut)
def get_subscription(
    razorpay_subscription_id: str,
    refresh: bool = False,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    mapping = store.get_mapping(db, razorpay_subscription_id)
    if mapping is None:
        raise HTTPException(status_code=404, detail="Subscription not found")

    detail = SubscriptionDetailOut.model_validate(mapping)
    detail.payments = [
        PaymentRecordOut.model_validate(p) for p in store.list_payments(db, razorpay_subscription_id)
    ]

    if refresh:
        # live status only; the stored mapping keeps its creation-time snapshot
        try:
            detail.gateway_status = gateway.fetch_subscription(razorpay_subscription_id).get("status")
        except GatewayError as e:
            raise HTTPException(status_code=502, detail=str(e))
    return detail


@router.get("/payments", response_model=List[PaymentRecordOut])
def list_payments(subscription_id: Optional[str] = None, db: Session = Depends(get_db)):
    return store.list_payments(db, subscription_id)


@router.post("/payments/replay")
def replay_payment(
    payment: PaymentEntity,
    db: Session = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Re-run capture reconciliation for a charge whose Shopify order was never created."""
    if payment.status != store.CAPTURED:
        raise HTTPException(status_code=400, detail="Only captured payments can be replayed")
    if not payment.subscription_id:
        raise HTTPException(status_code=400, detail="subscription_id is required")

    mapping = store.get_mapping(db, payment.subscription_id)
    if mapping is None:
        raise HTTPException(status_code=404, detail="Subscription not found")

    try:
        order_id = reconciler.reconcile(db, mapping, payment)
    except DuplicateEvent:
        existing = store.get_payment(db, payment.id)
        raise HTTPException(
            status_code=409,
            detail=f"Payment already processed (order {existing.shopify_order_id if existing else None})",
        )

    if order_id is None:
        raise HTTPException(status_code=502, detail="Shopify order could not be created; see logs")

    logger.info("Replayed Razorpay payment %s into order %s", payment.id, order_id)
    return {"payment_id": payment.id, "shopify_order_id": order_id}
