"""
Pytest configuration and shared fixtures for backend tests.
"""

import asyncio
import hashlib
import hmac
import json
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

# Import after path is set
from api.dependencies import token_service
from api.middleware.rate_limit import limiter
from core.interfaces.services import (
    ContentProvider,
    GeneratedContent,
    PaymentProcessor,
    ProcessorPayment,
    ProcessorSubscription,
)
from infrastructure.config.settings import Settings
from infrastructure.database.connection import create_session_factory
from infrastructure.database.models import Base, User
from services import build_services

WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


# ============================================================================
# Doubles
# ============================================================================

class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePaymentProcessor(PaymentProcessor):
    """Records calls; set ``fail_create`` / ``fail_cancel`` to an exception to simulate outages."""

    def __init__(self):
        self.created: list[str] = []
        self.cancelled: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_cancel: Exception | None = None
        self.payments: dict[str, ProcessorPayment] = {}

    def add_payment(self, payment_id: str, amount, status: str = "captured") -> None:
        self.payments[payment_id] = ProcessorPayment(
            id=payment_id, amount=Decimal(str(amount)), currency="INR", status=status
        )

    async def create_subscription(self, *, user_id, plan, currency, billing_cycle):
        # Yield so concurrent creates interleave
        await asyncio.sleep(0)
        if self.fail_create is not None:
            raise self.fail_create
        subscription_id = f"sub_{uuid4().hex[:14]}"
        self.created.append(subscription_id)
        return ProcessorSubscription(
            id=subscription_id,
            plan_id=f"plan_{plan}_{currency.lower()}_{billing_cycle}",
            status="created",
        )

    async def cancel_subscription(self, subscription_id):
        if self.fail_cancel is not None:
            raise self.fail_cancel
        self.cancelled.append(subscription_id)

    async def fetch_payment(self, payment_id):
        return self.payments.get(payment_id)


class FakeContentProvider(ContentProvider):
    def __init__(self, tokens_used: int = 120):
        self.tokens_used = tokens_used
        self.calls: list[tuple[str, dict]] = []
        self.error: Exception | None = None

    async def generate(self, prompt, params=None):
        if self.error is not None:
            raise self.error
        self.calls.append((prompt, params or {}))
        return GeneratedContent(
            text=f"Generated: {prompt}",
            tokens_used=self.tokens_used,
            model="fake-model",
        )


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def db_engine(tmp_path):
    """
    File-backed SQLite engine in WAL mode.

    Every session gets its own connection, so concurrent tasks contend on
    the database the way separate requests would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def make_user(session_factory):
    """Factory that stores a user and returns it."""

    async def _make(plan: str = "free", **kwargs) -> User:
        user = User(
            id=str(uuid4()),
            email=kwargs.pop("email", f"{uuid4().hex[:12]}@example.com"),
            name=kwargs.pop("name", "Test User"),
            plan=plan,
            **kwargs,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
async def test_user(make_user) -> User:
    """Create a test user on the free plan."""
    return await make_user()


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
def payment_processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def content_provider() -> FakeContentProvider:
    return FakeContentProvider()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        razorpay_webhook_secret=WEBHOOK_SECRET,
        default_plan="free",
        usage_history_months=12,
    )


@pytest.fixture
def services(session_factory, test_settings, payment_processor, content_provider, clock):
    return build_services(
        session_factory,
        test_settings,
        payment_processor=payment_processor,
        content_provider=content_provider,
        clock=clock,
    )


# ============================================================================
# HTTP
# ============================================================================

def bearer_headers(user: User) -> dict:
    access_token = token_service.create_access_token(user_id=user.id, email=user.email)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    return bearer_headers(test_user)


@pytest.fixture
def headers_for():
    return bearer_headers


@pytest.fixture
async def async_client(services) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client wired to the test services."""
    # Import app here to avoid circular imports
    from main import app

    app.state.services = services

    # Reset rate limiter state between tests to prevent cross-test 429s
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.state.services = None


# ============================================================================
# Webhook Fixtures
# ============================================================================

@pytest.fixture
def sign_webhook():
    """Return (body, signature) for a payload signed with the test secret."""

    def _sign(payload: dict | bytes, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return body, signature

    return _sign


@pytest.fixture
def charged_payload():
    """
    Build a subscription.charged payload in Razorpay's webhook format.

    Amounts are in minor units (paise / cents).
    """

    def _build(
        subscription_id: str,
        invoice_id: str = "inv_001",
        current_end: datetime = FIXED_NOW + timedelta(days=30),
        amount: int = 29900,
    ) -> dict:
        return {
            "entity": "event",
            "event": "subscription.charged",
            "contains": ["subscription", "payment"],
            "payload": {
                "subscription": {
                    "entity": {
                        "id": subscription_id,
                        "status": "active",
                        "current_end": int(current_end.timestamp()),
                        "plan_item": {"amount": amount},
                    }
                },
                "payment": {
                    "entity": {
                        "id": f"pay_{invoice_id}",
                        "invoice_id": invoice_id,
                        "amount": amount,
                        "status": "captured",
                        "created_at": int(FIXED_NOW.timestamp()),
                    }
                },
            },
            "created_at": int(FIXED_NOW.timestamp()),
        }

    return _build


@pytest.fixture
def subscription_event():
    """Build a subscription.* payload carrying only the subscription entity."""

    def _build(event_name: str, subscription_id: str | None) -> dict:
        entity = {"status": event_name.split(".")[-1]}
        if subscription_id is not None:
            entity["id"] = subscription_id
        return {
            "entity": "event",
            "event": event_name,
            "payload": {"subscription": {"entity": entity}},
        }

    return _build
