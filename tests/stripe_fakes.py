"""Fake external clients and Stripe payload builders for tests."""
import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional

from app.services.avatar_service import AvatarStorage
from app.services.stripe_service import StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"


class FakeStripeGateway(StripeGateway):
    """StripeGateway that records calls instead of reaching Stripe."""

    def __init__(self, webhook_secret: Optional[str] = WEBHOOK_SECRET):
        super().__init__(api_key="sk_test_fake", webhook_secret=webhook_secret)
        self.calls: List[tuple] = []
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.product_metadata: Dict[str, Dict[str, Any]] = {}

    def create_customer(self, email, user_id):
        self.calls.append(("create_customer", email, user_id))
        return f"cus_{user_id}"

    def create_subscription_checkout(self, customer_id, price_id, user_id, success_url, cancel_url):
        self.calls.append(("create_subscription_checkout", customer_id, price_id))
        return f"https://checkout.stripe.test/{price_id}"

    def create_topup_checkout(self, customer_id, user_id, unit_amount, credits, product_name,
                              description, success_url, cancel_url):
        self.calls.append(("create_topup_checkout", customer_id, unit_amount, credits))
        return "https://checkout.stripe.test/topup"

    def create_portal_session(self, customer_id, return_url):
        self.calls.append(("create_portal_session", customer_id))
        return f"https://billing.stripe.test/{customer_id}"

    def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve_subscription", subscription_id))
        return self.subscriptions[subscription_id]

    def retrieve_product_metadata(self, price_id):
        return dict(self.product_metadata.get(price_id, {}))

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeAvatarStorage(AvatarStorage):
    """AvatarStorage that keeps uploads in memory."""

    def __init__(self):
        super().__init__(bucket="avatars-test", public_base_url="https://cdn.test", client=object())
        self.objects: Dict[str, bytes] = {}

    def put(self, key, data, content_type):
        self.objects[key] = data
        return f"{self.public_base_url}/{key}"


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, data_object: Dict[str, Any], event_id: str = "evt_1",
               created: Optional[int] = None) -> Dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "data": {"object": data_object},
    }


def make_subscription(subscription_id: str = "sub_1", customer: str = "cus_1",
                      price_id: str = "price_pro_monthly", status: str = "active",
                      period_start: int = 1_767_225_600, period_end: int = 1_769_904_000,
                      on_item: bool = False) -> Dict[str, Any]:
    """Stripe subscription object; on_item puts the period bounds on the item only."""
    item = {"id": "si_1", "price": {"id": price_id}}
    subscription = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": False,
        "items": {"data": [item]},
    }
    bounds = {"current_period_start": period_start, "current_period_end": period_end}
    if on_item:
        item.update(bounds)
    else:
        subscription.update(bounds)
    return subscription
