from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.common.tenancy import TenantContext, TenantRepository
from app.dependencies.tenantDependencies import TenantDependencies
from app.database.database import get_async_db
from app.modules.sales.cancellation import CancellationService
from app.modules.sales.fulfillment import FulfillmentService
from app.modules.sales.models import SaleStatus, PaymentStatus
from app.modules.sales.service import SaleService
from app.modules.sales.schemas import (
    ConvertToSaleRequest, PaymentDecision, SaleOut,
    SaleCancellationCreate, SaleCancellationOut
)

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("/convert", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
async def convert_to_sale(
    request: ConvertToSaleRequest,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(["owner", "admin", "seller"]))
):
    """Convertir una cotización o un pedido en línea en venta."""
    service = FulfillmentService(TenantRepository(db, auth_context))
    decision = PaymentDecision(
        payment_method=request.payment_method,
        due_date=request.due_date,
        notes=request.notes
    )
    return await service.convert_to_sale(request.source_id, request.source_kind, decision)


@sales_router.get("", response_model=List[SaleOut])
async def list_sales(
    customer_id: Optional[UUID] = Query(None),
    sale_status: Optional[SaleStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    service = SaleService(TenantRepository(db, auth_context))
    return await service.list_sales(customer_id, sale_status, payment_status, limit, offset)


@sales_router.get("/cancellations", response_model=List[SaleCancellationOut])
async def list_cancellations(
    sale_id: Optional[UUID] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    """Historial de cancelaciones."""
    service = CancellationService(TenantRepository(db, auth_context))
    return await service.list_cancellations(sale_id=sale_id, limit=limit, offset=offset)


@sales_router.get("/{sale_id}", response_model=SaleOut)
async def get_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    service = SaleService(TenantRepository(db, auth_context))
    return await service.get_sale(sale_id)


@sales_router.post("/{sale_id}/cancel", response_model=SaleCancellationOut, status_code=status.HTTP_201_CREATED)
async def cancel_sale(
    sale_id: UUID,
    cancellation_data: SaleCancellationCreate,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_owner_or_admin())
):
    """Cancelar una venta (total o parcial). Solo owner/admin."""
    service = CancellationService(TenantRepository(db, auth_context))
    return await service.cancel(
        sale_id=sale_id,
        cancellation_type=cancellation_data.cancellation_type,
        reason=cancellation_data.reason,
        refund_amount=cancellation_data.refund_amount,
        restock_items=cancellation_data.restock_items,
        notes=cancellation_data.notes
    )
