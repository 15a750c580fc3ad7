import base64
import hashlib
import hmac
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from autopay_bridge.config import Settings, get_settings  # noqa: E402
from autopay_bridge.database import Base, get_db  # noqa: E402
from autopay_bridge.main import app as fastapi_app  # noqa: E402
from autopay_bridge.models import ShopSession, SubscriptionMapping, SubscriptionPlan  # noqa: E402
from autopay_bridge.notifications import Notifier, get_notifier  # noqa: E402
from autopay_bridge.razorpay_service import RazorpayGateway, get_gateway  # noqa: E402
from autopay_bridge.shopify_service import ShopifyAdmin, ShopifyAdminFactory, get_shopify_factory  # noqa: E402

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

SHOP = "demo-store.myshopify.com"
WEBHOOK_SECRET = "whsec_test"
SHOPIFY_SECRET = "shpss_test"
JWT_SECRET = "jwt_test_secret"


def sign_razorpay(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_shopify(body: bytes, secret: str = SHOPIFY_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def payment_event(event="payment.captured", payment_id="pay_001", subscription_id="sub_001",
                  status="captured", amount=100000, currency="INR", created_at=1760000000):
    entity = {
        "id": payment_id,
        "entity": "payment",
        "subscription_id": subscription_id,
        "status": status,
        "amount": amount,
        "currency": currency,
        "created_at": created_at,
    }
    return {"entity": "event", "event": event, "payload": {"payment": {"entity": entity}}}


def shopify_order(order_id="gid://shopify/Order/1001", selling_plan_group="gid://shopify/SellingPlanGroup/1",
                  line_items=None, total="1000.00", currency=None, with_contract=True):
    if line_items is None:
        line_items = [{
            "id": "gid://shopify/LineItem/1",
            "title": "Coffee Beans",
            "quantity": 2,
            "variant": {"id": "V1", "title": "250g", "price": "500"},
            "sellingPlan": {
                "id": "gid://shopify/SellingPlan/11",
                "name": "Monthly",
                "sellingPlanGroup": {"id": selling_plan_group, "name": "Monthly/1"},
            },
        }]
    contracts = [{"node": {"id": "gid://shopify/SubscriptionContract/7", "status": "ACTIVE",
                           "billingPolicy": {"interval": "MONTH", "intervalCount": 1}}}] if with_contract else []
    return {
        "id": order_id,
        "name": "#1001",
        "email": "asha@example.com",
        "customer": {"id": "gid://shopify/Customer/5", "email": "asha@example.com",
                     "firstName": "Asha", "lastName": "Rao"},
        "totalPriceSet": {"shopMoney": {"amount": total, "currencyCode": currency}},
        "lineItems": {"edges": [{"node": node} for node in line_items]},
        "subscriptionContracts": {"edges": contracts},
    }


def make_mapping(db, **overrides):
    fields = dict(
        razorpay_subscription_id="sub_001",
        razorpay_customer_id="cust_001",
        shop=SHOP,
        shopify_order_id="gid://shopify/Order/1001",
        shopify_contract_id=None,
        customer_email="asha@example.com",
        customer_name="Asha Rao",
        subscription_plan_id="1",
        subscription_plan_name="Monthly/1",
        amount=100000,
        currency="INR",
        status="created",
        line_items_json=json.dumps([{"title": "Coffee Beans", "variant_id": "V1", "quantity": 2, "price": "500"}]),
    )
    fields.update(overrides)
    mapping = SubscriptionMapping(**fields)
    db.add(mapping)
    db.commit()
    db.refresh(mapping)
    return mapping


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret="rzp_test_secret",
        razorpay_webhook_secret=WEBHOOK_SECRET,
        shopify_api_secret=SHOPIFY_SECRET,
        shopify_app_handle="autopay-subscriptions",
        jwt_secret=JWT_SECRET,
    )


@pytest.fixture
def seeded(db):
    """Offline session and plan definition the app install flow would have written."""
    db.add(ShopSession(id=f"offline_{SHOP}", shop=SHOP, is_online=False, access_token="shpat_test"))
    db.add(SubscriptionPlan(selling_plan_group_id="gid://shopify/SellingPlanGroup/1",
                            name="Monthly/1", billing_interval="MONTH", interval_count=1))
    db.commit()


@pytest.fixture
def gateway(mocker):
    gateway = mocker.Mock(spec=RazorpayGateway)
    gateway.get_or_create_customer.return_value = "cust_001"
    gateway.get_or_create_plan.return_value = {"id": "plan_001"}
    gateway.create_subscription.return_value = {"id": "sub_001", "status": "created"}
    gateway.fetch_subscription.return_value = {"id": "sub_001", "status": "active"}
    return gateway


@pytest.fixture
def admin(mocker):
    admin = mocker.Mock(spec=ShopifyAdmin)
    admin.fetch_order.return_value = shopify_order()
    admin.create_order.return_value = "gid://shopify/Order/2001"
    return admin


@pytest.fixture
def shopify(mocker, admin):
    factory = mocker.Mock(spec=ShopifyAdminFactory)
    factory.for_shop.return_value = admin
    return factory


@pytest.fixture
def notifier(mocker):
    return mocker.Mock(spec=Notifier)


@pytest.fixture
def client(settings, gateway, shopify, notifier):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_shopify_factory] = lambda: shopify
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()
