"""Webhook orchestration.

Each function returns a short outcome label; every label maps to a 200 response.
Exceptions that escape (Razorpay failures while provisioning, programming
errors) become a 500 in the route so the sending platform redelivers.
"""
import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session

from autopay_bridge import store
from autopay_bridge.errors import DuplicateEvent, MalformedEvent, UpstreamFailure
from autopay_bridge.models import SubscriptionPlan
from autopay_bridge.provisioning import SubscriptionProvisioner, subscription_line_item
from autopay_bridge.reconciliation import PaymentReconciler
from autopay_bridge.schemas import PaymentEntity, RazorpayEvent
from autopay_bridge.shopify_service import ShopifyAdmin

logger = logging.getLogger(__name__)

PAYMENT_AUTHORIZED = "payment.authorized"
PAYMENT_CAPTURED = "payment.captured"


def handle_payment_event(db: Session, event: RazorpayEvent, reconciler: PaymentReconciler) -> str:
    if event.event not in (PAYMENT_AUTHORIZED, PAYMENT_CAPTURED):
        logger.info("Ignoring Razorpay event %s", event.event)
        return "ignored"

    raw = event.payment_entity()
    if not raw:
        logger.info("No payment entity in %s webhook", event.event)
        return "ignored"
    try:
        payment = PaymentEntity.model_validate(raw)
    except ValidationError as e:
        logger.warning("Malformed payment entity in %s webhook: %s", event.event, e)
        return "ignored"

    if not payment.subscription_id:
        logger.info("Payment %s is not for a subscription", payment.id)
        return "ignored"

    mapping = store.get_mapping(db, payment.subscription_id)
    if mapping is None:
        logger.info("Subscription %s not found for payment %s", payment.subscription_id, payment.id)
        return "unknown_subscription"

    try:
        if event.event == PAYMENT_CAPTURED and payment.status == store.CAPTURED:
            order_id = reconciler.reconcile(db, mapping, payment)
            return "order_created" if order_id else "order_failed"

        status = store.AUTHORIZED if event.event == PAYMENT_AUTHORIZED else payment.status
        store.record_audit_payment(db, payment, status)
        logger.info("Recorded %s payment %s for subscription %s", status, payment.id, payment.subscription_id)
        return "recorded"
    except DuplicateEvent:
        logger.info("Payment already processed: %s", payment.id)
        return "duplicate"


def get_plan_for_group(db: Session, selling_plan_group_id: str):
    return db.query(SubscriptionPlan).filter_by(selling_plan_group_id=selling_plan_group_id).first()


def plan_note(plan: SubscriptionPlan, app_handle: str) -> str:
    link = f"/apps/{app_handle}/app?planId={plan.selling_plan_group_id}"
    return f"Subscription Plan: {plan.name}\nView/Edit Plan: {link}"


def handle_order_created(db: Session, shop: str, order_id: str, admin: ShopifyAdmin,
                         provisioner: SubscriptionProvisioner, app_handle: str) -> str:
    order = admin.fetch_order(order_id)
    if not order:
        logger.info("Order %s not found on %s", order_id, shop)
        return "order_not_found"

    line_item = subscription_line_item(order)
    if line_item is None:
        logger.info("Order %s is not a subscription order, skipping", order["id"])
        return "not_subscription"

    if store.find_mapping_by_order(db, shop, order["id"]) is not None:
        logger.info("Order %s already has a Razorpay subscription", order["id"])
        return "duplicate"

    group = line_item["sellingPlan"].get("sellingPlanGroup") or {}
    plan = get_plan_for_group(db, group.get("id"))
    if plan is None:
        logger.warning("No subscription plan configured for selling plan group %s (order %s)",
                       group.get("id"), order["id"])
        return "plan_not_found"

    try:
        mapping = provisioner.provision(db, shop, order, plan)
    except DuplicateEvent as e:
        # a concurrent delivery stored its mapping first; the Razorpay objects created here are unused
        logger.warning("Lost provisioning race for order %s: %s", order["id"], e)
        return "duplicate"
    except MalformedEvent as e:
        logger.warning("Skipping subscription order %s on %s: %s", order["id"], shop, e)
        return "missing_customer"

    logger.info("Razorpay subscription %s created for order %s", mapping.razorpay_subscription_id, order["id"])

    try:
        admin.update_order_note(order["id"], plan_note(plan, app_handle))
    except UpstreamFailure as e:
        logger.error("Error updating note on order %s: %s", order["id"], e)

    return "provisioned"
