"""Shared fixtures: in-memory SQLite, a frozen clock, a scripted subscriber endpoint."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-hookrelay-tests-0123456789abcdef"
os.environ["LOG_FORMAT"] = "text"
os.environ["SENTRY_DSN"] = ""

from datetime import datetime, timedelta, timezone  # noqa: E402

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

import hookrelay.models  # noqa: E402,F401
from hookrelay.config import settings  # noqa: E402
from hookrelay.core.database import Base, async_session, engine  # noqa: E402
from hookrelay.main import app  # noqa: E402
from hookrelay.models.webhook_delivery import WebhookDelivery  # noqa: E402
from hookrelay.models.webhook_subscription import WebhookSubscription  # noqa: E402
from hookrelay.services.container import WebhookServices  # noqa: E402
from hookrelay.services.transport import HttpxClient  # noqa: E402

TEST_SECRET = "whsec_0123456789abcdef0123456789abcdef"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.current = now or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeEndpoint:
    """Subscriber endpoint behind httpx.MockTransport.

    Answers every request with ``status_code``/``text`` unless ``error`` is
    set, in which case the error is raised as if the network failed.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.text = "ok"
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)


@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest_asyncio.fixture
async def services(clock, endpoint):
    http = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))
    built = WebhookServices.build(async_session, http_client=HttpxClient(http), clock=clock)
    yield built
    await built.aclose()
    await http.aclose()


@pytest_asyncio.fixture
async def client(services):
    app.state.webhook_services = services
    app.state.delivery_engine = services.engine
    app.state.webhook_receiver = services.receiver
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _token(sub: str) -> str:
    return jwt.encode(
        {"sub": sub}, settings.SECRET_KEY, algorithm=settings.ACCESS_TOKEN_ALGORITHM
    )


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {_token('user-1')}"}


@pytest.fixture
def other_auth_headers() -> dict:
    return {"Authorization": f"Bearer {_token('user-2')}"}


@pytest.fixture
def make_subscription():
    async def _make(**overrides) -> WebhookSubscription:
        fields = {
            "url": "https://hooks.example.com/receive",
            "events": ["comment.created"],
            "secret": TEST_SECRET,
            "active": True,
            "max_retries": 6,
            "retry_backoff": "exponential",
            "owner": None,
        }
        fields.update(overrides)
        async with async_session() as db:
            subscription = WebhookSubscription(**fields)
            db.add(subscription)
            await db.commit()
            await db.refresh(subscription)
            return subscription

    return _make


@pytest.fixture
def make_delivery():
    async def _make(subscription: WebhookSubscription, **overrides) -> WebhookDelivery:
        fields = {
            "subscription_id": subscription.id,
            "event_type": "comment.created",
            "payload": '{"event": "comment.created", "timestamp": "2026-01-15T12:00:00.000Z", "data": {"id": 1}}',
            "status": "pending",
            "attempts": 0,
        }
        fields.update(overrides)
        async with async_session() as db:
            delivery = WebhookDelivery(**fields)
            db.add(delivery)
            await db.commit()
            await db.refresh(delivery)
            return delivery

    return _make
