import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, UniqueConstraint

from autopay_bridge.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class SubscriptionMapping(Base):
    """Links a Shopify subscription order to the Razorpay subscription that bills it."""

    __tablename__ = "razorpay_subscriptions"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_order_id", name="uq_subscription_shop_order"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    razorpay_subscription_id = Column(String, unique=True, index=True, nullable=False)
    razorpay_customer_id = Column(String, nullable=False)

    shop = Column(String, index=True, nullable=False)
    shopify_order_id = Column(String, nullable=True)       # backfilled on first reconciled payment
    shopify_contract_id = Column(String, nullable=True)

    customer_email = Column(String, nullable=False)
    customer_name = Column(String, nullable=False)
    subscription_plan_id = Column(String, nullable=False)
    subscription_plan_name = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)               # smallest currency unit
    currency = Column(String, default="INR", nullable=False)
    line_items_json = Column(Text, nullable=True)          # snapshot reused for every cycle

    status = Column(String, nullable=False)                # mirrors Razorpay subscription status
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    @property
    def line_items(self):
        if not self.line_items_json:
            return []
        return json.loads(self.line_items_json)


class PaymentRecord(Base):
    """One Razorpay charge against a mapped subscription."""

    __tablename__ = "razorpay_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    razorpay_payment_id = Column(String, unique=True, index=True, nullable=False)
    razorpay_subscription_id = Column(String, index=True, nullable=False)
    shopify_order_id = Column(String, nullable=True)       # set once the Shopify order exists

    amount = Column(Integer, nullable=False)               # smallest currency unit
    currency = Column(String, default="INR", nullable=False)
    status = Column(String, nullable=False)                # authorized | captured
    payment_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class ShopSession(Base):
    """Shopify OAuth session, written by the app install flow."""

    __tablename__ = "sessions"

    id = Column(String, primary_key=True)
    shop = Column(String, index=True, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    access_token = Column(String, nullable=False)
    scope = Column(String, nullable=True)


class SubscriptionPlan(Base):
    """Plan definition managed from the app's plan screens."""

    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    selling_plan_group_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    billing_interval = Column(String, default="MONTH", nullable=False)  # DAY | WEEK | MONTH | YEAR
    interval_count = Column(Integer, default=1, nullable=False)
    discount_value = Column(Float, default=0, nullable=False)
