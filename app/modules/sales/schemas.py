from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import date, datetime

from app.modules.sales.models import (
    SaleStatus, PaymentMethod, PaymentStatus, SourceType, CancellationType
)


class PaymentDecision(BaseModel):
    """Forma de pago elegida al convertir un documento en venta."""
    # Opcional para pedidos en línea: se toma de la forma de pago del pedido
    payment_method: Optional[PaymentMethod] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class ConvertToSaleRequest(PaymentDecision):
    source_id: UUID
    source_kind: SourceType


# Sale schemas
class SaleItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    discount: Decimal
    total: Decimal


class SaleBalanceOut(BaseModel):
    """Resumen de cartera de una venta."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    folio: str
    total: Decimal
    amount_paid: Decimal
    remaining_balance: Decimal
    payment_status: PaymentStatus
    status: SaleStatus


class SaleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    folio: str
    customer_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    source_type: Optional[SourceType] = None
    source_id: Optional[UUID] = None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: PaymentMethod
    status: SaleStatus
    amount_paid: Decimal
    remaining_balance: Decimal
    payment_status: PaymentStatus
    due_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime
    items: List[SaleItemOut] = []


# Cancellation schemas
class RestockItem(BaseModel):
    product_id: UUID
    quantity: int = Field(..., gt=0)


class SaleCancellationCreate(BaseModel):
    cancellation_type: CancellationType
    reason: str = Field(..., min_length=1, max_length=255)
    refund_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None
    restock_items: Optional[List[RestockItem]] = None

    @model_validator(mode="after")
    def restock_only_partial(self):
        if self.restock_items and self.cancellation_type == CancellationType.FULL:
            raise ValueError("restock_items solo aplica a cancelaciones parciales")
        return self


class SaleCancellationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sale_id: UUID
    cancellation_type: CancellationType
    reason: str
    refund_amount: Decimal
    released_balance: Decimal
    debt_released: Decimal
    notes: Optional[str] = None
    cancelled_by: Optional[UUID] = None
    cancelled_at: datetime
