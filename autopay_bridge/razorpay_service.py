import logging
import time
from functools import lru_cache
from typing import Optional

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError as SDKGatewayError, ServerError

from autopay_bridge.config import get_settings
from autopay_bridge.errors import GatewayError

logger = logging.getLogger(__name__)

NOTES = {"source": "shopify_subscription"}

# Shopify selling plan interval -> Razorpay plan period
PERIODS = {
    "DAY": "daily",
    "WEEK": "weekly",
    "MONTH": "monthly",
    "YEAR": "yearly",
}

_SDK_ERRORS = (
    BadRequestError,
    SDKGatewayError,
    ServerError,
    requests.RequestException,
)


def razorpay_period(billing_interval: Optional[str]) -> str:
    return PERIODS.get((billing_interval or "").upper(), "monthly")


class RazorpayGateway:
    """Thin wrapper over ``razorpay.Client`` for the calls provisioning needs."""

    def __init__(self, client: razorpay.Client, currency: str = "INR"):
        self.client = client
        self.currency = currency

    def get_or_create_customer(self, email: str, name: str, contact: str = "") -> str:
        try:
            customers = self.client.customer.all(data={"count": 100})
            for customer in customers.get("items", []):
                if customer.get("email") == email:
                    logger.debug("Reusing Razorpay customer %s for %s", customer["id"], email)
                    return customer["id"]

            # fail_existing=0 returns the existing customer instead of erroring
            customer = self.client.customer.create(data={
                "name": name,
                "email": email,
                "contact": contact,
                "fail_existing": "0",
            })
        except _SDK_ERRORS as e:
            raise GatewayError(f"customer lookup/create failed for {email}: {e}") from e
        return customer["id"]

    def get_or_create_plan(self, name: str, amount: int, period: str, interval: int = 1) -> dict:
        """Reuse a plan with the same name, billing cycle and price, else create one."""
        try:
            plans = self.client.plan.all(data={"count": 100})
            for existing in plans.get("items", []):
                item = existing.get("item") or {}
                if (existing.get("period") == period and existing.get("interval") == interval
                        and item.get("name") == name and item.get("amount") == amount
                        and item.get("currency") == self.currency):
                    logger.debug("Reusing Razorpay plan %s for %s", existing["id"], name)
                    return existing

            return self.client.plan.create(data={
                "period": period,
                "interval": interval,
                "item": {
                    "name": name,
                    "amount": amount,
                    "currency": self.currency,
                    "description": f"Subscription plan: {name}",
                },
                "notes": NOTES,
            })
        except _SDK_ERRORS as e:
            raise GatewayError(f"plan create failed for {name}: {e}") from e

    def create_subscription(self, plan_id: str, customer_id: str, total_count: int = 0,
                            start_at: Optional[int] = None) -> dict:
        """``total_count=0`` keeps billing open-ended."""
        try:
            return self.client.subscription.create(data={
                "plan_id": plan_id,
                "customer_id": customer_id,
                "customer_notify": 1,
                "total_count": total_count,
                "start_at": start_at or int(time.time()),
                "notes": NOTES,
            })
        except _SDK_ERRORS as e:
            raise GatewayError(f"subscription create failed for plan {plan_id}: {e}") from e

    def fetch_subscription(self, subscription_id: str) -> dict:
        try:
            return self.client.subscription.fetch(subscription_id)
        except _SDK_ERRORS as e:
            raise GatewayError(f"subscription fetch failed for {subscription_id}: {e}") from e


@lru_cache
def get_gateway() -> RazorpayGateway:
    settings = get_settings()
    client = razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))
    return RazorpayGateway(client, currency=settings.settlement_currency)
