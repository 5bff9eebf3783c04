from contextlib import contextmanager
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from libs.auth.models import SERVICE_ROLE, AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import models so metadata includes every table
from services.orders_service import models as _order_models  # noqa: F401
from tests.factories import (
    BusinessFactory,
    ConnectionFactory,
    ProductFactory,
    VariantFactory,
)
from tests.fakes import FakeShopifyClient, FakeStripeClient, RecordingTaskQueue


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_owner_user(user_id: str = "owner-1", email: str = "owner@test.com") -> AuthUser:
    return AuthUser(user_id=user_id, email=email, role="authenticated")


def make_service_user(name: str = "agent") -> AuthUser:
    return AuthUser(user_id=f"service:{name}", role=SERVICE_ROLE)


@contextmanager
def override_auth(app, user: AuthUser):
    """Temporarily authenticate requests to ``app`` as ``user``."""
    from libs.auth.dependencies import get_current_user

    previous = app.dependency_overrides.get(get_current_user)
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield
    finally:
        if previous is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory SQLite database per test.
    StaticPool keeps the single connection alive so every session sees the
    same tables.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def task_queue() -> RecordingTaskQueue:
    return RecordingTaskQueue()


@pytest.fixture
def stripe_client() -> FakeStripeClient:
    return FakeStripeClient()


@pytest.fixture
def shopify_client() -> FakeShopifyClient:
    return FakeShopifyClient()


@pytest.fixture
def orchestrator(stripe_client, shopify_client):
    from services.orders_service.payments.orchestrator import PaymentOrchestrator

    return PaymentOrchestrator(
        get_settings(),
        stripe_client_factory=lambda: stripe_client,
        shopify_client_factory=lambda connection: shopify_client,
    )


# ---------------------------------------------------------------------------
# Catalog data
# ---------------------------------------------------------------------------


@pytest.fixture
def owner() -> AuthUser:
    return make_owner_user()


@pytest_asyncio.fixture
async def business(db_session, owner):
    business = BusinessFactory.create(owner_auth_id=owner.user_id, name="Acme Bakery")
    db_session.add(business)
    await db_session.commit()
    return business


@pytest_asyncio.fixture
async def product(db_session, business):
    """$5.00 product with one tracked variant (stock 10)."""
    product = ProductFactory.create(business_id=business.id, name="Croissant", price=500)
    db_session.add(product)
    await db_session.commit()
    return product


@pytest_asyncio.fixture
async def variant(db_session, product):
    variant = VariantFactory.create(
        product_id=product.id,
        name="Butter",
        sku="CRO-BUT",
        inventory_quantity=10,
        external_variant_id="gid://shopify/ProductVariant/111",
    )
    db_session.add(variant)
    await db_session.commit()
    return variant


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def connection(db_session, business):
    connection = ConnectionFactory.create(
        business_id=business.id, shop_domain="acme.myshopify.com"
    )
    db_session.add(connection)
    await db_session.commit()
    return connection


@pytest_asyncio.fixture
async def draft_order(db_session, owner, business, product, variant):
    """Draft order for 2 units of the $5.00 variant."""
    from services.orders_service.schemas import OrderItemInput
    from services.orders_service.services.orders import create_order

    return await create_order(
        db_session,
        actor=owner,
        business_id=business.id,
        conversation_id="conv-1",
        contact_phone="+15550100",
        contact_name="Dana",
        items=[OrderItemInput(product_id=product.id, variant_id=variant.id, quantity=2)],
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(db_session, owner, task_queue, orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient for the orders app with DB, auth, queue and
    payment dependencies overridden.
    """
    from libs.auth.dependencies import get_current_user
    from libs.common.task_queue import get_task_queue
    from libs.db.session import get_async_db
    from services.orders_service.app.main import app
    from services.orders_service.payments.orchestrator import get_payment_orchestrator

    async def _db():
        yield db_session

    app.dependency_overrides[get_async_db] = _db
    app.dependency_overrides[get_current_user] = lambda: owner
    app.dependency_overrides[get_task_queue] = lambda: task_queue
    app.dependency_overrides[get_payment_orchestrator] = lambda: orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
