"""Shared pytest fixtures for the test suite."""
import json
from typing import Any, Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.routes.avatar import get_avatar_storage
from app.api.routes.billing import get_stripe_gateway
from app.core import config
from app.core.security import create_access_token, hash_password
from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.models.user import User
from app.db.session import get_db
from tests.stripe_fakes import WEBHOOK_SECRET, FakeAvatarStorage, FakeStripeGateway, sign_payload


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

PRICES = {
    "STRIPE_PRICE_PRO_MONTHLY": "price_pro_monthly",
    "STRIPE_PRICE_PRO_ANNUAL": "price_pro_annual",
    "STRIPE_PRICE_POWER_MONTHLY": "price_power_monthly",
    "STRIPE_PRICE_POWER_ANNUAL": "price_power_annual",
    "STRIPE_PRICE_BUSINESS_STARTER_MONTHLY": "price_biz_starter_monthly",
    "STRIPE_PRICE_BUSINESS_STARTER_ANNUAL": "price_biz_starter_annual",
    "STRIPE_PRICE_BUSINESS_PRO_MONTHLY": "price_biz_pro_monthly",
    "STRIPE_PRICE_BUSINESS_PRO_ANNUAL": "price_biz_pro_annual",
}


@pytest.fixture(autouse=True)
def stripe_prices(monkeypatch):
    """Configure the Stripe price IDs of every paid plan."""
    for name, value in PRICES.items():
        monkeypatch.setattr(config, name, value)
    return PRICES


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database session per test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
def avatar_storage() -> FakeAvatarStorage:
    return FakeAvatarStorage()


@pytest.fixture
def client(db_session, gateway, avatar_storage) -> Generator[TestClient, None, None]:
    """Test client wired to the test database and fake external clients."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # closed by the db_session fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    app.dependency_overrides[get_avatar_storage] = lambda: avatar_storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def test_user(db_session) -> User:
    user = User(
        full_name="Test User",
        email="test@example.com",
        password_hash=hash_password("testpass123"),
        stripe_customer_id="cus_1",
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user) -> Dict[str, str]:
    token = create_access_token({"sub": str(test_user.id), "type": "regular"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def post_webhook(client):
    """POST a signed event to the webhook endpoint."""

    def _post(event: Dict[str, Any], secret: str = WEBHOOK_SECRET):
        payload = json.dumps(event)
        return client.post(
            "/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, secret), "Content-Type": "application/json"},
        )

    return _post
