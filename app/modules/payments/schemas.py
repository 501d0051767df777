from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.sales.models import PaymentMethod
from app.modules.sales.schemas import SaleBalanceOut
from app.modules.customers.schemas import CustomerBalanceOut


class CustomerPaymentCreate(BaseModel):
    customer_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: PaymentMethod
    sale_id: Optional[UUID] = None
    reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None
    distribute: bool = Field(False, description="Distribuir el abono entre ventas a crédito (más antiguas primero)")


class CustomerPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    sale_id: Optional[UUID] = None
    amount: Decimal
    debt_applied: Decimal
    payment_method: PaymentMethod
    reference: Optional[str] = None
    payment_date: datetime
    notes: Optional[str] = None
    user_id: Optional[UUID] = None


class PaymentResult(BaseModel):
    payments: List[CustomerPaymentOut]
    sale: Optional[SaleBalanceOut] = None
    affected_sales: List[SaleBalanceOut] = []
    customer: CustomerBalanceOut
    unallocated_amount: Decimal = Decimal("0")


class CardData(BaseModel):
    """Datos de tarjeta para la pasarela (nunca se persisten)."""
    number: str = Field(..., min_length=12, max_length=19, pattern=r"^\d+$")
    holder_name: str = Field(..., min_length=1, max_length=100)
    exp_month: int = Field(..., ge=1, le=12)
    exp_year: int = Field(..., ge=2000)
    cvv: str = Field(..., min_length=3, max_length=4, pattern=r"^\d+$")

    @property
    def last4(self) -> str:
        return self.number[-4:]


class SettlementResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
