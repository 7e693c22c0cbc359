import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Load .env.test if present, then pin what the test run depends on
env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CHECKOUT_TAX_RATE", "0")

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with the env above
get_settings.cache_clear()

from libs.auth.dependencies import get_current_user  # noqa: E402
from libs.auth.models import AuthUser  # noqa: E402
from libs.db.base import Base  # noqa: E402
from libs.db.session import get_async_db  # noqa: E402
from services.commerce_service import dependencies  # noqa: E402
from services.commerce_service import models as _commerce_models  # noqa: E402,F401
from services.commerce_service.app.main import app  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeAddressBook,
    FakeCatalog,
    FakeGateway,
    FakeInventory,
    FakeNotifier,
    FakeReconciler,
)


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory database per test.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def address_book() -> FakeAddressBook:
    return FakeAddressBook()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def reconciler() -> FakeReconciler:
    return FakeReconciler()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def as_user():
    """Switch the authenticated caller: ``as_user("buyer-1")``."""

    def _set(user_id: str, role: str = "authenticated") -> AuthUser:
        user = AuthUser(sub=user_id, email=None, role=role)
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _set


@pytest_asyncio.fixture
async def client(
    session_factory, catalog, address_book, gateway, inventory, notifier, reconciler
) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the commerce app with DB and collaborators overridden.
    Each request gets its own session, as in production.
    """

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    app.dependency_overrides[dependencies.get_catalog] = lambda: catalog
    app.dependency_overrides[dependencies.get_inventory] = lambda: inventory
    app.dependency_overrides[dependencies.get_address_book] = lambda: address_book
    app.dependency_overrides[dependencies.get_payment_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_notifier] = lambda: notifier
    app.dependency_overrides[dependencies.get_reconciler] = lambda: reconciler

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    """Auth is overridden per test; the bearer header only satisfies HTTPBearer."""
    return {"Authorization": "Bearer mock-token"}
