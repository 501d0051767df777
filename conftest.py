"""
Fixtures compartidas para los tests de módulos.

Cada test recibe una base SQLite en memoria nueva (aiosqlite + StaticPool)
con todas las tablas creadas.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import jwt
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.common.tenancy import TenantContext, TenantRepository
from app.database.database import get_async_db, init_models
from app.main import app
from app.modules.customers.models import Customer
from app.modules.products.models import Product
from app.modules.sales.models import Sale, PaymentMethod, PaymentStatus, SaleStatus


# ===== BASE DE DATOS =====

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ===== CONTEXTO DE TENANT =====

@pytest.fixture
def tenant_context():
    return TenantContext(tenant_id=uuid4(), user_id=uuid4(), role="owner")


@pytest.fixture
def other_tenant_context():
    return TenantContext(tenant_id=uuid4(), user_id=uuid4(), role="owner")


@pytest.fixture
def repo(db_session, tenant_context):
    return TenantRepository(db_session, tenant_context)


@pytest.fixture
def other_repo(db_session, other_tenant_context):
    return TenantRepository(db_session, other_tenant_context)


# ===== FÁBRICAS =====

@pytest.fixture
def make_product(repo):
    async def _make(name="Producto de prueba", price="100.00", stock=10, target_repo=None, **extra):
        target = target_repo or repo
        product = Product(
            name=name,
            sku=extra.pop("sku", f"SKU-{uuid4().hex[:8]}"),
            price=Decimal(price),
            cost=Decimal(extra.pop("cost", "0")),
            stock=stock,
            **extra
        )
        target.add(product)
        await target.commit()
        return product
    return _make


@pytest.fixture
def make_customer(repo):
    async def _make(name="Cliente de prueba", email=None, phone=None, credit_limit="0",
                    current_debt="0", payment_terms_days=0, target_repo=None):
        target = target_repo or repo
        customer = Customer(
            name=name,
            email=email or f"cliente-{uuid4().hex[:6]}@example.com",
            phone=phone,
            credit_limit=Decimal(credit_limit),
            current_debt=Decimal(current_debt),
            payment_terms_days=payment_terms_days
        )
        target.add(customer)
        await target.commit()
        return customer
    return _make


@pytest.fixture
def make_credit_sale(repo):
    """Venta a crédito abierta insertada directamente (sin pasar por conversión)."""
    async def _make(customer, total="1000.00", folio=None, created_at=None, due_date=None,
                    amount_paid="0", status=SaleStatus.COMPLETED):
        total = Decimal(total)
        paid = Decimal(amount_paid)
        sale = Sale(
            folio=folio or f"VTA-T{uuid4().hex[:6]}",
            customer_id=customer.id,
            subtotal=total,
            tax=Decimal("0"),
            total=total,
            payment_method=PaymentMethod.CREDITO,
            status=status,
            amount_paid=paid,
            remaining_balance=total - paid,
            payment_status=PaymentStatus.PENDING if paid == 0 else PaymentStatus.PARTIAL,
            due_date=due_date,
            created_at=created_at or datetime.now(timezone.utc)
        )
        repo.add(sale)
        await repo.commit()
        return sale
    return _make


# ===== HTTP =====

@pytest.fixture
async def client(session_factory):
    async def override_get_async_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_get_async_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_token(context: TenantContext, role: str = "owner") -> str:
    payload = {
        "sub": str(context.user_id),
        "tenant_id": str(context.tenant_id),
        "user_role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1)
    }
    return jwt.encode(payload, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)


@pytest.fixture
def auth_headers(tenant_context):
    return {"Authorization": f"Bearer {make_token(tenant_context)}"}


@pytest.fixture
def seller_headers(tenant_context):
    return {"Authorization": f"Bearer {make_token(tenant_context, role='seller')}"}
