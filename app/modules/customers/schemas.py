from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import date, datetime

from app.modules.sales.models import PaymentMethod, PaymentStatus


class CustomerBalanceOut(BaseModel):
    """Cliente con su estado de cartera."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Decimal
    current_debt: Decimal
    payment_terms_days: int


class StatementSaleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    folio: str
    total: Decimal
    amount_paid: Decimal
    remaining_balance: Decimal
    payment_status: PaymentStatus
    due_date: Optional[date] = None
    created_at: datetime
    is_overdue: bool = False


class StatementPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sale_id: Optional[UUID] = None
    amount: Decimal
    payment_method: PaymentMethod
    reference: Optional[str] = None
    payment_date: datetime


class AccountStatementSummary(BaseModel):
    credit_limit: Decimal
    current_debt: Decimal
    available_credit: Decimal
    usage_percent: Optional[Decimal] = None
    open_sales: int
    overdue_sales: int
    due_soon_sales: int


class AccountStatement(BaseModel):
    """Estado de cuenta del cliente."""
    customer: CustomerBalanceOut
    summary: AccountStatementSummary
    pending_sales: List[StatementSaleOut]
    recent_payments: List[StatementPaymentOut]
