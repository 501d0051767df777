from fastapi import APIRouter, Depends, status
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.tenancy import TenantContext, TenantRepository
from app.dependencies.tenantDependencies import TenantDependencies
from app.database.database import get_async_db
from app.modules.quotations.service import QuotationService
from app.modules.quotations.schemas import QuotationCreate, QuotationOut, QuotationStatusUpdate

quotations_router = APIRouter(prefix="/quotations", tags=["Quotations"])


@quotations_router.post("", response_model=QuotationOut, status_code=status.HTTP_201_CREATED)
async def create_quotation(
    quotation_data: QuotationCreate,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(["owner", "admin", "seller"]))
):
    """Crear una cotización."""
    service = QuotationService(TenantRepository(db, auth_context))
    return await service.create_quotation(quotation_data)


@quotations_router.get("/{quotation_id}", response_model=QuotationOut)
async def get_quotation(
    quotation_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    service = QuotationService(TenantRepository(db, auth_context))
    return await service.get_quotation(quotation_id)


@quotations_router.patch("/{quotation_id}/status", response_model=QuotationOut)
async def update_quotation_status(
    quotation_id: UUID,
    status_data: QuotationStatusUpdate,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(["owner", "admin", "seller"]))
):
    """Enviar o cancelar una cotización."""
    service = QuotationService(TenantRepository(db, auth_context))
    return await service.change_status(quotation_id, status_data.status)
