from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    subscription_id: Optional[str] = None
    status: str
    amount: int                      # smallest currency unit
    currency: Optional[str] = "INR"
    created_at: int                  # epoch seconds


class RazorpayEvent(BaseModel):
    """Envelope of a Razorpay webhook: ``{event, payload: {payment: {entity}}}``."""

    model_config = ConfigDict(extra="ignore")

    event: str
    payload: dict = Field(default_factory=dict)

    def payment_entity(self) -> Optional[dict]:
        payment = self.payload.get("payment") or {}
        return payment.get("entity")


class LineItemSnapshot(BaseModel):
    title: Optional[str] = None
    variant_id: str
    quantity: int
    price: str


class PaymentRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    razorpay_payment_id: str
    razorpay_subscription_id: str
    shopify_order_id: Optional[str] = None
    amount: int
    currency: str
    status: str
    payment_date: datetime


class SubscriptionMappingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    razorpay_subscription_id: str
    razorpay_customer_id: str
    shop: str
    shopify_order_id: Optional[str] = None
    shopify_contract_id: Optional[str] = None
    customer_email: str
    customer_name: str
    subscription_plan_id: str
    subscription_plan_name: str
    amount: int
    currency: str
    status: str
    line_items: List[LineItemSnapshot] = []


class SubscriptionDetailOut(SubscriptionMappingOut):
    payments: List[PaymentRecordOut] = []
    gateway_status: Optional[str] = None
