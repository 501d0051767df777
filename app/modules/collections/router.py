from datetime import date
from fastapi import APIRouter, Depends, Query
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.tenancy import TenantContext, TenantRepository
from app.dependencies.tenantDependencies import TenantDependencies
from app.database.database import get_async_db
from app.modules.collections.service import CollectionsService
from app.modules.collections.schemas import (
    AgingReportResponse, CreditAlertsResponse, CollectionsSummaryResponse
)
from app.modules.customers.schemas import AccountStatement, CustomerBalanceOut
from app.modules.payments.service import PaymentLedger

collections_router = APIRouter(prefix="/collections", tags=["Collections"])
customers_router = APIRouter(prefix="/customers", tags=["Customers"])

COLLECTIONS_ROLES = ["owner", "admin", "accountant", "viewer"]


@collections_router.get("/aging", response_model=AgingReportResponse)
async def get_aging_report(
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(COLLECTIONS_ROLES))
):
    """Antigüedad de saldos de cartera."""
    service = CollectionsService(TenantRepository(db, auth_context))
    return await service.aging_report()


@collections_router.get("/alerts", response_model=CreditAlertsResponse)
async def get_credit_alerts(
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(COLLECTIONS_ROLES))
):
    """Alertas de cobranza: vencidas, por vencer y límite de crédito."""
    service = CollectionsService(TenantRepository(db, auth_context))
    return await service.credit_alerts()


@collections_router.get("/summary", response_model=CollectionsSummaryResponse)
async def get_collections_summary(
    start_date: date = Query(..., description="Fecha inicial del periodo"),
    end_date: date = Query(..., description="Fecha final del periodo"),
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(COLLECTIONS_ROLES))
):
    service = CollectionsService(TenantRepository(db, auth_context))
    return await service.collections_summary(start_date, end_date)


@customers_router.get("/{customer_id}/account-statement", response_model=AccountStatement)
async def get_account_statement(
    customer_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    """Estado de cuenta del cliente."""
    service = CollectionsService(TenantRepository(db, auth_context))
    return await service.account_statement(customer_id)


@customers_router.post("/{customer_id}/recompute-debt", response_model=CustomerBalanceOut)
async def recompute_customer_debt(
    customer_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_owner_or_admin())
):
    """Recalcular la deuda del cliente desde ventas y abonos."""
    service = PaymentLedger(TenantRepository(db, auth_context))
    return await service.recompute_customer_debt(customer_id)
