from fastapi import BackgroundTasks, Depends, Request

from autopay_bridge.notifications import Notifier, get_notifier
from autopay_bridge.provisioning import SubscriptionProvisioner
from autopay_bridge.razorpay_service import RazorpayGateway, get_gateway
from autopay_bridge.reconciliation import PaymentReconciler
from autopay_bridge.shopify_service import ShopifyAdminFactory, get_shopify_factory


async def raw_body(request: Request) -> bytes:
    """Unparsed request body, for signature checks."""
    return await request.body()


def get_provisioner(
    background_tasks: BackgroundTasks,
    gateway: RazorpayGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> SubscriptionProvisioner:
    return SubscriptionProvisioner(gateway, notifier, schedule=background_tasks.add_task)


def get_reconciler(
    background_tasks: BackgroundTasks,
    shopify: ShopifyAdminFactory = Depends(get_shopify_factory),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentReconciler:
    return PaymentReconciler(shopify, notifier, schedule=background_tasks.add_task)
