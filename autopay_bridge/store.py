"""Idempotency store.

Both webhook flows look here before touching Razorpay or Shopify. The unique
keys on ``razorpay_subscriptions`` and ``razorpay_payments`` are what finally
decide a race between two deliveries of the same event; a losing insert is
rolled back and reported as :class:`DuplicateEvent`.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from autopay_bridge.errors import DuplicateEvent
from autopay_bridge.models import PaymentRecord, SubscriptionMapping
from autopay_bridge.schemas import PaymentEntity

logger = logging.getLogger(__name__)

AUTHORIZED = "authorized"
CAPTURED = "captured"


@dataclass
class PaymentClaim:
    """A captured payment this delivery owns until it completes or releases it."""
    razorpay_payment_id: str
    previous_status: Optional[str] = None   # None when the claim inserted the row


def _payment_date(entity: PaymentEntity) -> datetime:
    return datetime.fromtimestamp(entity.created_at, tz=timezone.utc)


def find_mapping_by_order(db: Session, shop: str, shopify_order_id: str) -> Optional[SubscriptionMapping]:
    return db.query(SubscriptionMapping).filter_by(shop=shop, shopify_order_id=shopify_order_id).first()


def get_mapping(db: Session, razorpay_subscription_id: str) -> Optional[SubscriptionMapping]:
    return db.query(SubscriptionMapping).filter_by(razorpay_subscription_id=razorpay_subscription_id).first()


def save_mapping(db: Session, mapping: SubscriptionMapping) -> SubscriptionMapping:
    """Insert ``mapping``; raises :class:`DuplicateEvent` only when one of its unique keys is taken."""
    subscription_id = mapping.razorpay_subscription_id
    shop, order_id = mapping.shop, mapping.shopify_order_id

    db.add(mapping)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        taken = get_mapping(db, subscription_id) is not None or (
            order_id is not None and find_mapping_by_order(db, shop, order_id) is not None
        )
        if not taken:
            raise
        raise DuplicateEvent(
            f"mapping already exists for subscription {subscription_id} or order {order_id}"
        )
    db.refresh(mapping)
    return mapping


def attach_order_to_mapping(db: Session, mapping: SubscriptionMapping, shopify_order_id: str) -> bool:
    """Backfill the originating order id; only the first caller wins."""
    result = db.execute(
        update(SubscriptionMapping)
        .where(
            SubscriptionMapping.id == mapping.id,
            SubscriptionMapping.shopify_order_id.is_(None),
        )
        .values(shopify_order_id=shopify_order_id)
    )
    db.commit()
    return result.rowcount > 0


def get_payment(db: Session, razorpay_payment_id: str) -> Optional[PaymentRecord]:
    return db.query(PaymentRecord).filter_by(razorpay_payment_id=razorpay_payment_id).first()


def list_payments(db: Session, razorpay_subscription_id: Optional[str] = None):
    query = db.query(PaymentRecord)
    if razorpay_subscription_id:
        query = query.filter_by(razorpay_subscription_id=razorpay_subscription_id)
    return query.order_by(PaymentRecord.payment_date.desc()).all()


def _new_payment(entity: PaymentEntity, status: str) -> PaymentRecord:
    return PaymentRecord(
        razorpay_payment_id=entity.id,
        razorpay_subscription_id=entity.subscription_id,
        amount=entity.amount,
        currency=entity.currency or "INR",
        status=status,
        payment_date=_payment_date(entity),
    )


def record_audit_payment(db: Session, entity: PaymentEntity, status: str = AUTHORIZED) -> PaymentRecord:
    """Audit row for a payment that is authorized but not yet settled."""
    if get_payment(db, entity.id) is not None:
        raise DuplicateEvent(f"payment {entity.id} already recorded")

    record = _new_payment(entity, status)
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEvent(f"payment {entity.id} already recorded")
    return record


def claim_capture(db: Session, entity: PaymentEntity) -> PaymentClaim:
    """Take ownership of a captured payment before any Shopify call is made.

    Inserts the row in ``captured`` state, or promotes an ``authorized`` audit
    row to ``captured``. Any other existing row means the charge is already
    handled (or being handled) and raises :class:`DuplicateEvent`.
    """
    existing = get_payment(db, entity.id)
    if existing is None:
        db.add(_new_payment(entity, CAPTURED))
        try:
            db.commit()
            return PaymentClaim(razorpay_payment_id=entity.id)
        except IntegrityError:
            db.rollback()
            existing = get_payment(db, entity.id)
            if existing is None:
                raise

    if existing.status == CAPTURED:
        raise DuplicateEvent(f"payment {entity.id} already captured")

    previous_status = existing.status
    result = db.execute(
        update(PaymentRecord)
        .where(
            PaymentRecord.razorpay_payment_id == entity.id,
            PaymentRecord.status != CAPTURED,
        )
        .values(status=CAPTURED, amount=entity.amount, currency=entity.currency or "INR")
    )
    db.commit()
    if result.rowcount == 0:
        raise DuplicateEvent(f"payment {entity.id} already captured")
    return PaymentClaim(razorpay_payment_id=entity.id, previous_status=previous_status)


def complete_capture(db: Session, claim: PaymentClaim, shopify_order_id: str) -> None:
    db.execute(
        update(PaymentRecord)
        .where(PaymentRecord.razorpay_payment_id == claim.razorpay_payment_id)
        .values(shopify_order_id=shopify_order_id)
    )
    db.commit()


def release_capture(db: Session, claim: PaymentClaim) -> None:
    """Undo a claim so the charge can be replayed later."""
    db.rollback()
    if claim.previous_status is None:
        db.execute(
            delete(PaymentRecord).where(PaymentRecord.razorpay_payment_id == claim.razorpay_payment_id)
        )
    else:
        db.execute(
            update(PaymentRecord)
            .where(PaymentRecord.razorpay_payment_id == claim.razorpay_payment_id)
            .values(status=claim.previous_status)
        )
    db.commit()
    logger.info("Released claim on payment %s", claim.razorpay_payment_id)
