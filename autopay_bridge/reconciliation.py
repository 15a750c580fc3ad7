import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from autopay_bridge import store
from autopay_bridge.errors import BridgeError, MalformedEvent, NotFound
from autopay_bridge.models import SubscriptionMapping
from autopay_bridge.notifications import Notifier, call_now
from autopay_bridge.schemas import LineItemSnapshot, PaymentEntity
from autopay_bridge.shopify_service import ShopifyAdminFactory

logger = logging.getLogger(__name__)

ORDER_NOTE = "Auto-generated from Razorpay subscription payment. Payment ID: {payment_id}"


def load_snapshot(mapping: SubscriptionMapping) -> List[dict]:
    try:
        items = [LineItemSnapshot(**item).model_dump() for item in mapping.line_items]
    except (ValueError, TypeError) as e:
        raise MalformedEvent(
            f"line item snapshot for {mapping.razorpay_subscription_id} is unreadable: {e}"
        ) from e
    if not items:
        raise MalformedEvent(f"no line items stored for subscription {mapping.razorpay_subscription_id}")
    return items


class PaymentReconciler:
    """Turns a captured Razorpay charge into a Shopify order for that billing cycle."""

    def __init__(self, shopify: ShopifyAdminFactory, notifier: Notifier,
                 schedule: Optional[Callable] = None):
        self.shopify = shopify
        self.notifier = notifier
        self.schedule = schedule or call_now

    def reconcile(self, db: Session, mapping: SubscriptionMapping, payment: PaymentEntity) -> Optional[str]:
        """Create the Shopify order for ``payment`` and link it to the payment record.

        Returns the new order id, or ``None`` when the order could not be created.
        That failure is logged for manual replay rather than raised: the webhook is
        still acknowledged so Razorpay stops redelivering it. Raises
        :class:`DuplicateEvent` when another delivery already owns the payment.
        """
        claim = store.claim_capture(db, payment)

        try:
            order_id = self._create_order(db, mapping, payment)
        except BridgeError as e:
            store.release_capture(db, claim)
            logger.error(
                "Could not create Shopify order for Razorpay payment %s (subscription %s, shop %s): %s. "
                "Replay required.",
                payment.id, mapping.razorpay_subscription_id, mapping.shop, e,
            )
            return None
        except Exception:
            store.release_capture(db, claim)
            raise

        store.complete_capture(db, claim, order_id)
        if not mapping.shopify_order_id:
            store.attach_order_to_mapping(db, mapping, order_id)

        logger.info("Shopify order %s created for Razorpay payment %s", order_id, payment.id)
        self.schedule(
            self.notifier.send_payment_email,
            mapping.customer_name,
            mapping.customer_email,
            mapping.subscription_plan_name,
            payment.amount,
            payment.currency or mapping.currency,
            order_id,
        )
        return order_id

    def _create_order(self, db: Session, mapping: SubscriptionMapping, payment: PaymentEntity) -> str:
        line_items = load_snapshot(mapping)

        admin = self.shopify.for_shop(db, mapping.shop)
        if admin is None:
            raise NotFound(f"no offline Shopify session for {mapping.shop}")

        return admin.create_order(
            mapping.customer_email,
            mapping.customer_name,
            line_items,
            ORDER_NOTE.format(payment_id=payment.id),
        )
