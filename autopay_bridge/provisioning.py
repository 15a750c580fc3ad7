import json
import logging
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from autopay_bridge import store
from autopay_bridge.errors import MalformedEvent
from autopay_bridge.models import SubscriptionMapping, SubscriptionPlan
from autopay_bridge.notifications import Notifier, call_now
from autopay_bridge.razorpay_service import RazorpayGateway, razorpay_period

logger = logging.getLogger(__name__)


def _edges(connection: Optional[dict]) -> List[dict]:
    return [edge["node"] for edge in (connection or {}).get("edges") or []]


def subscription_line_item(order: dict) -> Optional[dict]:
    """First line item bought on a selling plan, if any."""
    for node in _edges(order.get("lineItems")):
        if node.get("sellingPlan"):
            return node
    return None


def subscription_contract(order: dict) -> Optional[dict]:
    contracts = _edges(order.get("subscriptionContracts"))
    return contracts[0] if contracts else None


def customer_identity(order: dict) -> Tuple[str, str]:
    customer = order.get("customer")
    email = (customer or {}).get("email") or order.get("email")
    if not customer:
        return email, email
    name = f"{customer.get('firstName') or ''} {customer.get('lastName') or ''}".strip()
    return email, name or email


def line_item_snapshot(order: dict) -> List[dict]:
    items = []
    for node in _edges(order.get("lineItems")):
        variant = node.get("variant")
        if not variant:
            logger.warning("Line item %s on order %s has no variant; left out of snapshot",
                           node.get("id"), order.get("id"))
            continue
        items.append({
            "title": node.get("title"),
            "variant_id": variant["id"],
            "quantity": node["quantity"],
            "price": str(variant.get("price")),
        })
    return items


def order_total(order: dict) -> Tuple[int, str]:
    """Order total in the smallest currency unit, with its currency code."""
    money = order["totalPriceSet"]["shopMoney"]
    amount = int((Decimal(str(money["amount"])) * 100).quantize(Decimal("1")))
    return amount, money.get("currencyCode") or "INR"


class SubscriptionProvisioner:
    """Mirrors a Shopify subscription order as a Razorpay customer/plan/subscription."""

    def __init__(self, gateway: RazorpayGateway, notifier: Notifier,
                 schedule: Optional[Callable] = None):
        self.gateway = gateway
        self.notifier = notifier
        self.schedule = schedule or call_now

    def provision(self, db: Session, shop: str, order: dict, plan: SubscriptionPlan,
                  total_count: int = 0) -> SubscriptionMapping:
        """Run the Razorpay calls, then persist the mapping.

        Nothing is written locally until every Razorpay call has succeeded, so a
        failure here can be retried by redelivering the webhook. An order with no
        customer email raises :class:`MalformedEvent` before Razorpay is called.
        """
        email, name = customer_identity(order)
        if not email:
            raise MalformedEvent(f"order {order['id']} has no customer email")
        amount, currency = order_total(order)
        contract = subscription_contract(order)

        customer_id = self.gateway.get_or_create_customer(email, name)
        gateway_plan = self.gateway.get_or_create_plan(
            plan.name,
            amount,
            razorpay_period(plan.billing_interval),
            plan.interval_count or 1,
        )
        subscription = self.gateway.create_subscription(gateway_plan["id"], customer_id, total_count)
        logger.info("Created Razorpay subscription %s (plan %s, customer %s) for order %s",
                    subscription["id"], gateway_plan["id"], customer_id, order["id"])

        mapping = store.save_mapping(db, SubscriptionMapping(
            razorpay_subscription_id=subscription["id"],
            razorpay_customer_id=customer_id,
            shop=shop,
            shopify_order_id=order["id"],
            shopify_contract_id=contract["id"] if contract else None,
            customer_email=email,
            customer_name=name,
            subscription_plan_id=str(plan.id),
            subscription_plan_name=plan.name,
            amount=amount,
            currency=currency,
            status=subscription["status"],
            line_items_json=json.dumps(line_item_snapshot(order)),
        ))

        self.schedule(
            self.notifier.send_setup_email,
            mapping.customer_name,
            mapping.customer_email,
            mapping.subscription_plan_name,
            mapping.razorpay_subscription_id,
        )
        return mapping
