"""
Invoicemonk - Test Configuration

Pytest fixtures and configuration.

Every test gets its own SQLite file so that tests using several sessions
(concurrency, reconciliation) see real transaction isolation.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import app.models  # noqa: F401
from app.database import Base, build_engine, get_async_session
from app.models.business import Business
from app.models.client import Client
from app.models.invoice import Invoice
from app.models.tax import TaxSchema
from app.models.user import BusinessMember, BusinessRole, User
from app.services.audit_service import ActorContext
from app.services.invoice_service import InvoiceService
from app.utils.security import create_access_token
from main import app


DEFAULT_LINE_ITEMS = [
    {
        "description": "Consulting services",
        "quantity": Decimal("2"),
        "unit_price": Decimal("500.00"),
        "tax_rate": Decimal("7.5"),
    },
]


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh database file with all tables."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'invoicemonk_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    """Factory for additional, independent sessions."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Owner with a verified email."""
    user = User(
        id=uuid4(),
        email="owner@example.com",
        full_name="Ada Owner",
        is_active=True,
        is_verified=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def unverified_user(db_session: AsyncSession, test_business: Business) -> User:
    """Member whose email is not verified yet."""
    user = User(
        id=uuid4(),
        email="pending@example.com",
        full_name="Pending Member",
        is_active=True,
        is_verified=False,
    )
    db_session.add(user)
    db_session.add(BusinessMember(
        id=uuid4(),
        business_id=test_business.id,
        user_id=user.id,
        role=BusinessRole.MEMBER,
    ))
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def auditor_user(db_session: AsyncSession, test_business: Business) -> User:
    """Read-only member."""
    user = User(
        id=uuid4(),
        email="auditor@example.com",
        full_name="Read Only",
        is_active=True,
        is_verified=True,
    )
    db_session.add(user)
    db_session.add(BusinessMember(
        id=uuid4(),
        business_id=test_business.id,
        user_id=user.id,
        role=BusinessRole.AUDITOR,
    ))
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def test_business(db_session: AsyncSession, test_user: User) -> Business:
    """Business owned by test_user."""
    business = Business(
        id=uuid4(),
        name="Acme Trading",
        legal_name="Acme Trading Limited",
        tax_id="12345678-0001",
        cac_number="RC123456",
        is_vat_registered=True,
        contact_email="billing@acme.example.com",
        address={"line1": "1 Marina Road", "city": "Lagos", "country": "NG"},
        jurisdiction="NG",
        invoice_prefix="INV",
        default_currency="NGN",
    )
    db_session.add(business)
    db_session.add(BusinessMember(
        id=uuid4(),
        business_id=business.id,
        user_id=test_user.id,
        role=BusinessRole.OWNER,
    ))
    await db_session.commit()
    return business


@pytest_asyncio.fixture
async def test_customer(db_session: AsyncSession, test_business: Business) -> Client:
    """Invoice recipient."""
    customer = Client(
        id=uuid4(),
        business_id=test_business.id,
        name="Globex Corporation",
        email="accounts@globex.example.com",
        phone="+234 809 876 5432",
        address={"line1": "5 Broad Street", "city": "Abuja"},
        tax_id="11223344-0001",
    )
    db_session.add(customer)
    await db_session.commit()
    return customer


@pytest_asyncio.fixture
async def test_tax_schema(db_session: AsyncSession) -> TaxSchema:
    """VAT rules in force for NG."""
    schema = TaxSchema(
        id=uuid4(),
        jurisdiction="NG",
        version="2026.1",
        name="Nigeria VAT",
        rates={"vat": "7.5"},
        rules={"vat_inclusive": False},
        effective_from=date.today() - timedelta(days=365),
        is_active=True,
    )
    db_session.add(schema)
    await db_session.commit()
    return schema


@pytest.fixture
def actor(test_user: User) -> ActorContext:
    return ActorContext(
        user_id=test_user.id,
        role=BusinessRole.OWNER.value,
        email_verified=True,
        source_ip="127.0.0.1",
        user_agent="pytest",
    )


@pytest.fixture
def make_draft(db_session: AsyncSession, test_business: Business, test_customer: Client, actor: ActorContext):
    """Factory creating draft invoices for the test business."""

    async def _make_draft(**kwargs) -> Invoice:
        kwargs.setdefault("line_items_data", DEFAULT_LINE_ITEMS)
        kwargs.setdefault("client_id", test_customer.id)
        invoice = await InvoiceService(db_session).create_draft(test_business.id, actor, **kwargs)
        await db_session.commit()
        return invoice

    return _make_draft


@pytest.fixture
def make_issued(db_session: AsyncSession, test_business: Business, actor: ActorContext, make_draft):
    """Factory creating issued invoices."""

    async def _make_issued(**kwargs) -> Invoice:
        draft = await make_draft(**kwargs)
        invoice = await InvoiceService(db_session).issue(test_business.id, draft.id, actor)
        await db_session.commit()
        return invoice

    return _make_issued


@pytest_asyncio.fixture
async def draft_invoice(make_draft) -> Invoice:
    return await make_draft()


@pytest_asyncio.fixture
async def issued_invoice(make_issued, test_tax_schema: TaxSchema) -> Invoice:
    return await make_issued()


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authorization headers for test user."""
    token = create_access_token(data={"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Authorization headers for any user."""

    def _headers_for(user: User) -> dict:
        token = create_access_token(data={"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers_for
