from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from app.modules.products.models import MovementType


class MovementResult(BaseModel):
    """Resultado de aplicar un movimiento en el StockLedger."""
    movement_id: UUID
    product_id: UUID
    type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    sale_id: Optional[UUID] = None


# Movement schemas
class InventoryMovementCreate(BaseModel):
    product_id: UUID
    type: MovementType
    quantity: int = Field(..., gt=0, description="Cantidad (siempre positiva, el tipo define el signo)")
    reason: Optional[str] = Field(None, max_length=255, description="Motivo del ajuste")


class InventoryMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    sale_id: Optional[UUID] = None
    type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: Optional[str] = None
    user_id: Optional[UUID] = None
    created_at: datetime


class InventoryMovementList(BaseModel):
    movements: List[InventoryMovementOut]
    total: int
    limit: int
    offset: int
