import pytest
from razorpay.errors import BadRequestError

from autopay_bridge.errors import GatewayError
from autopay_bridge.razorpay_service import RazorpayGateway, razorpay_period


@pytest.fixture
def rzp(mocker):
    client = mocker.Mock()
    client.customer.all.return_value = {"items": [{"id": "cust_old", "email": "someone@example.com"}]}
    client.customer.create.return_value = {"id": "cust_new"}
    client.plan.all.return_value = {"items": []}
    client.plan.create.return_value = {"id": "plan_001"}
    client.subscription.create.return_value = {"id": "sub_001", "status": "created"}
    return client


def test_period_mapping():
    assert razorpay_period("DAY") == "daily"
    assert razorpay_period("week") == "weekly"
    assert razorpay_period("YEAR") == "yearly"
    assert razorpay_period("FORTNIGHT") == "monthly"
    assert razorpay_period(None) == "monthly"


def test_existing_customer_is_reused(rzp):
    gateway = RazorpayGateway(rzp)
    assert gateway.get_or_create_customer("someone@example.com", "Some One") == "cust_old"
    rzp.customer.create.assert_not_called()


def test_customer_created_on_miss(rzp):
    gateway = RazorpayGateway(rzp)
    assert gateway.get_or_create_customer("asha@example.com", "Asha Rao") == "cust_new"
    data = rzp.customer.create.call_args.kwargs["data"]
    assert data["email"] == "asha@example.com"
    assert data["fail_existing"] == "0"


def test_plan_in_settlement_currency(rzp):
    RazorpayGateway(rzp, currency="INR").get_or_create_plan("Monthly/1", 100000, "monthly", 1)

    data = rzp.plan.create.call_args.kwargs["data"]
    assert data["period"] == "monthly"
    assert data["interval"] == 1
    assert data["item"] == {"name": "Monthly/1", "amount": 100000, "currency": "INR",
                            "description": "Subscription plan: Monthly/1"}


def test_matching_plan_is_reused(rzp):
    existing = {"id": "plan_old", "period": "monthly", "interval": 1,
                "item": {"name": "Monthly/1", "amount": 100000, "currency": "INR"}}
    rzp.plan.all.return_value = {"items": [
        {"id": "plan_other", "period": "monthly", "interval": 1,
         "item": {"name": "Monthly/1", "amount": 49900, "currency": "INR"}},
        existing,
    ]}

    assert RazorpayGateway(rzp).get_or_create_plan("Monthly/1", 100000, "monthly", 1) == existing
    rzp.plan.create.assert_not_called()


def test_subscription_is_open_ended_by_default(rzp):
    RazorpayGateway(rzp).create_subscription("plan_001", "cust_001", start_at=1760000000)

    data = rzp.subscription.create.call_args.kwargs["data"]
    assert data["total_count"] == 0
    assert data["customer_notify"] == 1
    assert data["plan_id"] == "plan_001"
    assert data["start_at"] == 1760000000


def test_sdk_errors_become_gateway_errors(rzp):
    rzp.plan.create.side_effect = BadRequestError("The amount must be atleast INR 1.00")
    with pytest.raises(GatewayError):
        RazorpayGateway(rzp).get_or_create_plan("Tiny", 0, "monthly")

    rzp.subscription.fetch.side_effect = BadRequestError("The id provided does not exist")
    with pytest.raises(GatewayError):
        RazorpayGateway(rzp).fetch_subscription("sub_missing")
