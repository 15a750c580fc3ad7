import logging
from functools import lru_cache
from typing import List, Optional

import httpx
from sqlalchemy.orm import Session

from autopay_bridge.config import get_settings
from autopay_bridge.errors import StorefrontError
from autopay_bridge.models import ShopSession

logger = logging.getLogger(__name__)

ORDER_QUERY = """
query getOrder($id: ID!) {
  order(id: $id) {
    id
    name
    email
    customer { id email firstName lastName }
    totalPriceSet { shopMoney { amount currencyCode } }
    lineItems(first: 10) {
      edges {
        node {
          id
          title
          quantity
          variant { id title price }
          sellingPlan { id name sellingPlanGroup { id name } }
        }
      }
    }
    subscriptionContracts(first: 1) {
      edges {
        node {
          id
          status
          billingPolicy { interval intervalCount }
        }
      }
    }
  }
}
"""

CUSTOMER_SEARCH_QUERY = """
query getCustomerByEmail($email: String!) {
  customers(first: 1, query: $email) { edges { node { id } } }
}
"""

CUSTOMER_CREATE_MUTATION = """
mutation customerCreate($input: CustomerInput!) {
  customerCreate(input: $input) {
    customer { id email }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_CREATE_MUTATION = """
mutation draftOrderCreate($input: DraftOrderInput!) {
  draftOrderCreate(input: $input) {
    draftOrder { id order { id } }
    userErrors { field message }
  }
}
"""

DRAFT_ORDER_COMPLETE_MUTATION = """
mutation draftOrderComplete($id: ID!) {
  draftOrderComplete(id: $id) {
    draftOrder { id order { id } }
    userErrors { field message }
  }
}
"""

ORDER_UPDATE_MUTATION = """
mutation orderUpdate($input: OrderInput!) {
  orderUpdate(input: $input) {
    order { id }
    userErrors { field message }
  }
}
"""


def _user_errors(payload: Optional[dict]) -> list:
    return (payload or {}).get("userErrors") or []


class ShopifyAdmin:
    """Admin GraphQL client bound to one shop's offline access token."""

    def __init__(self, http: httpx.Client, shop: str, access_token: str, api_version: str):
        self.http = http
        self.shop = shop
        self.access_token = access_token
        self.url = f"https://{shop}/admin/api/{api_version}/graphql.json"

    def graphql(self, query: str, variables: Optional[dict] = None) -> dict:
        try:
            response = self.http.post(
                self.url,
                json={"query": query, "variables": variables or {}},
                headers={"X-Shopify-Access-Token": self.access_token},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StorefrontError(f"Shopify request to {self.shop} failed: {e}") from e

        if body.get("errors"):
            raise StorefrontError(f"Shopify GraphQL errors for {self.shop}: {body['errors']}")
        return body.get("data") or {}

    def fetch_order(self, order_id: str) -> Optional[dict]:
        return self.graphql(ORDER_QUERY, {"id": order_id}).get("order")

    def find_or_create_customer(self, email: str, name: str) -> Optional[str]:
        data = self.graphql(CUSTOMER_SEARCH_QUERY, {"email": f"email:{email}"})
        edges = (data.get("customers") or {}).get("edges") or []
        if edges:
            return edges[0]["node"]["id"]

        first_name, _, last_name = (name or "").partition(" ")
        data = self.graphql(CUSTOMER_CREATE_MUTATION, {
            "input": {"email": email, "firstName": first_name, "lastName": last_name},
        })
        result = data.get("customerCreate") or {}
        customer = result.get("customer")
        if not customer:
            # the draft order still carries the email, so carry on without a customer id
            logger.warning("Shopify customerCreate failed for %s: %s", email, _user_errors(result))
            return None
        return customer["id"]

    def create_order(self, email: str, name: str, line_items: List[dict], note: str) -> str:
        """Create a draft order from ``line_items`` and complete it into a real order."""
        customer_id = self.find_or_create_customer(email, name)

        draft_input = {
            "lineItems": [
                {
                    "variantId": item["variant_id"],
                    "quantity": item["quantity"],
                    "originalUnitPrice": str(item["price"]),
                }
                for item in line_items
            ],
            "email": email,
            "note": note,
        }
        if customer_id:
            draft_input["customerId"] = customer_id

        data = self.graphql(DRAFT_ORDER_CREATE_MUTATION, {"input": draft_input})
        created = data.get("draftOrderCreate") or {}
        if _user_errors(created):
            raise StorefrontError("draftOrderCreate rejected", _user_errors(created))
        draft_id = (created.get("draftOrder") or {}).get("id")
        if not draft_id:
            raise StorefrontError("draftOrderCreate returned no draft order id")

        data = self.graphql(DRAFT_ORDER_COMPLETE_MUTATION, {"id": draft_id})
        completed = data.get("draftOrderComplete") or {}
        if _user_errors(completed):
            raise StorefrontError(f"draftOrderComplete rejected for {draft_id}", _user_errors(completed))
        order = ((completed.get("draftOrder") or {}).get("order")) or {}
        if not order.get("id"):
            raise StorefrontError(f"draft order {draft_id} completed without an order id")
        return order["id"]

    def update_order_note(self, order_id: str, note: str) -> None:
        data = self.graphql(ORDER_UPDATE_MUTATION, {"input": {"id": order_id, "note": note}})
        errors = _user_errors(data.get("orderUpdate"))
        if errors:
            raise StorefrontError(f"orderUpdate rejected for {order_id}", errors)


class ShopifyAdminFactory:
    """Resolves per-shop admin clients from the offline sessions table."""

    def __init__(self, http: httpx.Client, api_version: str):
        self.http = http
        self.api_version = api_version

    def for_shop(self, db: Session, shop: str) -> Optional[ShopifyAdmin]:
        session = db.query(ShopSession).filter_by(shop=shop, is_online=False).first()
        if session is None:
            return None
        return ShopifyAdmin(self.http, shop, session.access_token, self.api_version)


@lru_cache
def get_shopify_factory() -> ShopifyAdminFactory:
    settings = get_settings()
    return ShopifyAdminFactory(httpx.Client(), settings.shopify_api_version)
