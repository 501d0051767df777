from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.common.tenancy import TenantContext, TenantRepository
from app.dependencies.tenantDependencies import TenantDependencies
from app.database.database import get_async_db
from app.modules.inventory.service import StockLedger
from app.modules.inventory.schemas import (
    InventoryMovementCreate, InventoryMovementOut, InventoryMovementList, MovementType
)

movements_router = APIRouter(prefix="/inventory/movements", tags=["Inventory"])


@movements_router.post("", response_model=InventoryMovementOut, status_code=status.HTTP_201_CREATED)
async def create_movement(
    movement_data: InventoryMovementCreate,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_owner_or_admin())
):
    """Registrar un ajuste manual de inventario (entrada o salida)."""
    service = StockLedger(TenantRepository(db, auth_context))
    return await service.record_movement(movement_data)


@movements_router.get("", response_model=InventoryMovementList)
async def get_movements(
    product_id: Optional[UUID] = Query(None),
    movement_type: Optional[MovementType] = Query(None),
    sale_id: Optional[UUID] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    """Listar movimientos de inventario con filtros."""
    service = StockLedger(TenantRepository(db, auth_context))
    return await service.list_movements(
        product_id=product_id,
        movement_type=movement_type,
        sale_id=sale_id,
        limit=limit,
        offset=offset
    )
