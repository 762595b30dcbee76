"""
Pytest configuration and fixtures for testing
"""
import json
import time

import pytest
import stripe
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from auth_utils import create_jwt, hash_password
from config.settings import settings
from crud.user import UserRepository
from database import Base, get_db
from dependencies import get_optional_stripe_gateway
from main import app
from models.billing_event import SubscriptionPayload
from services.stripe_gateway import StripeGateway
from utils.errors import DownstreamFailure

# Create in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite://"

TEST_JWT_SECRET = "test-jwt-secret-key-for-session-tokens"
TEST_WEBHOOK_SECRET = "whsec_test"
BASIC_PRICE_ID = "price_basic_test"
PREMIUM_PRICE_ID = "price_premium_test"

# One shared connection so the app and the test see the same in-memory database
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Secrets and price ids every test runs with."""
    monkeypatch.setattr(settings, "jwt_secret_key", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "stripe_webhook_secret", TEST_WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_basic_plan_price_id", BASIC_PRICE_ID)
    monkeypatch.setattr(settings, "stripe_premium_plan_price_id", PREMIUM_PRICE_ID)
    monkeypatch.setattr(settings, "app_url", "http://localhost:3000")
    return settings


@pytest.fixture
async def test_db():
    """
    Fixture that provides an isolated, in-memory SQLite database connection for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Drops all tables after the test completes
    """
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    async with TestAsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Fresh connection for the next test, which runs on its own event loop
    await test_engine.dispose()


class FakeStripeGateway(StripeGateway):
    """
    In-memory stand-in for the Stripe client.

    Records the params of every session it creates and serves subscriptions
    from a dict keyed by subscription id.
    """

    def __init__(self):
        super().__init__(client=None)
        self.checkout_calls = []
        self.portal_calls = []
        self.subscriptions = {}
        self.error = None

    def add_subscription(self, subscription: dict) -> None:
        self.subscriptions[subscription["id"]] = subscription

    async def create_checkout_session(self, params):
        if self.error:
            raise self.error
        self.checkout_calls.append(params)
        return {"id": "cs_test_123", "url": "https://checkout.stripe.com/c/pay/cs_test_123"}

    async def create_portal_session(self, params):
        if self.error:
            raise self.error
        self.portal_calls.append(params)
        return {"url": "https://billing.stripe.com/p/session/test_123"}

    async def retrieve_subscription(self, subscription_id):
        if self.error:
            raise self.error
        if subscription_id not in self.subscriptions:
            raise DownstreamFailure("Payment provider request failed")
        return SubscriptionPayload.model_validate(self.subscriptions[subscription_id])


@pytest.fixture
def stripe_gateway():
    return FakeStripeGateway()


@pytest.fixture
async def async_client(test_db, stripe_gateway):
    """HTTP client bound to the app, with the test database and fake Stripe gateway."""

    async def override_get_db():
        async with TestAsyncSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_optional_stripe_gateway] = lambda: stripe_gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(test_db):
    """Create and commit a credentials user."""

    async def _make_user(email="user@example.com", password="password123", **fields):
        user = await UserRepository(test_db).create_user({
            "email": email,
            "name": fields.pop("name", "Test User"),
            "hashed_password": hash_password(password),
        })
        for key, value in fields.items():
            setattr(user, key, value)
        await test_db.commit()
        return user

    return _make_user


def auth_headers(user) -> dict:
    token = create_jwt(str(user.id), user.plan.value)
    return {"Authorization": f"Bearer {token}"}


def subscription_object(
    subscription_id="sub_123",
    user_id=None,
    price_id=PREMIUM_PRICE_ID,
    status="active",
    customer="cus_123",
    period_end=1767225600,
):
    """A Stripe subscription object as it appears in event payloads."""
    metadata = {}
    if user_id is not None:
        metadata["user_id"] = str(user_id)
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": metadata,
        "items": {
            "object": "list",
            "data": [{
                "id": "si_123",
                "object": "subscription_item",
                "price": {"id": price_id, "object": "price"},
                "current_period_end": period_end,
            }],
        },
    }


def stripe_event(event_type, data_object, event_id="evt_123", created=None):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": data_object},
    }


def signed_delivery(event, secret=TEST_WEBHOOK_SECRET):
    """Serialize an event and sign it the way Stripe does."""
    payload = json.dumps(event)
    signature = stripe.WebhookSignature.generate_signature_header(payload, secret)
    return payload, {"stripe-signature": signature, "content-type": "application/json"}
