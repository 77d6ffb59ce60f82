"""
Integration tests for checkout, credit top-up and portal endpoints.
"""
from app.db.models.user import User
from app.services.subscription_store import SubscriptionRecord, upsert_subscription


def _subscribe(db, user, tier="pro", **fields):
    return upsert_subscription(db, SubscriptionRecord(user_id=user.id, tier=tier, **fields))


def test_checkout_requires_auth(client):
    response = client.post("/billing/checkout", json={"priceId": "price_pro_monthly"})

    assert response.status_code == 401


def test_checkout_returns_session_url(client, gateway, auth_headers):
    response = client.post("/billing/checkout", json={"priceId": "price_pro_monthly"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.test/price_pro_monthly"}
    assert ("create_subscription_checkout", "cus_1", "price_pro_monthly") in gateway.calls
    assert "create_customer" not in gateway.call_names()


def test_checkout_creates_and_links_customer(client, gateway, db_session, test_user, auth_headers):
    test_user.stripe_customer_id = None
    db_session.commit()

    response = client.post("/billing/checkout", json={"priceId": "price_power_annual"}, headers=auth_headers)

    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.query(User).filter(User.id == test_user.id).one().stripe_customer_id == f"cus_{test_user.id}"


def test_checkout_missing_price(client, gateway, auth_headers):
    response = client.post("/billing/checkout", json={}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"error": "Price ID is required"}
    assert gateway.calls == []


def test_checkout_unknown_price(client, gateway, auth_headers):
    response = client.post("/billing/checkout", json={"priceId": "price_bogus"}, headers=auth_headers)

    assert response.status_code == 400
    assert gateway.calls == []


def test_checkout_rejects_second_active_subscription(client, gateway, db_session, test_user, auth_headers):
    _subscribe(db_session, test_user, status="active", stripe_subscription_id="sub_1")

    response = client.post("/billing/checkout", json={"priceId": "price_power_monthly"}, headers=auth_headers)

    assert response.status_code == 400
    assert "active subscription" in response.json()["error"]
    assert gateway.calls == []


def test_buy_credits_below_minimum(client, gateway, db_session, test_user, auth_headers):
    _subscribe(db_session, test_user, tier="pro")

    response = client.post("/billing/buy-credits", json={"amount": 4}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"error": "Minimum purchase amount is $5"}
    assert gateway.calls == []


def test_buy_credits_requires_pro(client, gateway, db_session, test_user, auth_headers):
    _subscribe(db_session, test_user, tier="free")

    response = client.post("/billing/buy-credits", json={"amount": 10}, headers=auth_headers)

    assert response.status_code == 403
    assert gateway.calls == []


def test_buy_credits_creates_payment_session(client, gateway, db_session, test_user, auth_headers):
    _subscribe(db_session, test_user, tier="power")

    response = client.post("/billing/buy-credits", json={"amount": 12.5}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.test/topup"}
    assert ("create_topup_checkout", "cus_1", 1250, 1250) in gateway.calls


def test_portal_without_customer(client, gateway, db_session, test_user, auth_headers):
    test_user.stripe_customer_id = None
    db_session.commit()

    response = client.post("/billing/portal", headers=auth_headers)

    assert response.status_code == 404
    assert response.json() == {"error": "No Stripe customer found"}


def test_portal_returns_session_url(client, gateway, auth_headers):
    response = client.post("/billing/portal", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"url": "https://billing.stripe.test/cus_1"}


def test_buy_credits_rejects_canceled_subscription(client, gateway, db_session, test_user, auth_headers):
    _subscribe(db_session, test_user, tier="pro", status="canceled")

    response = client.post("/billing/buy-credits", json={"amount": 10}, headers=auth_headers)

    assert response.status_code == 403
    assert gateway.calls == []
