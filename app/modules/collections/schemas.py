"""
Pydantic schemas for the Collections module

Responses for aging, credit alerts and collections summary.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import enum

from pydantic import BaseModel, Field

from app.modules.sales.models import PaymentMethod


class AgingBucket(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0.00")


class AgingBuckets(BaseModel):
    """Buckets by days since the sale was created"""
    current: AgingBucket = Field(default_factory=AgingBucket, description="0-30 días")
    days_30: AgingBucket = Field(default_factory=AgingBucket, description="31-60 días")
    days_60: AgingBucket = Field(default_factory=AgingBucket, description="61-90 días")
    days_90_plus: AgingBucket = Field(default_factory=AgingBucket, description="Más de 90 días")


class TopDebtor(BaseModel):
    customer_id: UUID
    customer_name: str
    current_debt: Decimal
    credit_limit: Decimal
    usage_percent: Optional[Decimal] = Field(None, description="Null cuando el cliente no tiene límite de crédito")


class OverdueSale(BaseModel):
    sale_id: UUID
    folio: str
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = None
    remaining_balance: Decimal
    due_date: date
    days_overdue: int


class AgingReportResponse(BaseModel):
    as_of: datetime
    buckets: AgingBuckets
    total_outstanding: Decimal
    open_sales: int
    top_debtors: List[TopDebtor]
    overdue: List[OverdueSale]


class AlertType(str, enum.Enum):
    OVERDUE = "OVERDUE"
    DUE_SOON = "DUE_SOON"
    CREDIT_LIMIT_EXCEEDED = "CREDIT_LIMIT_EXCEEDED"
    CREDIT_LIMIT_WARNING = "CREDIT_LIMIT_WARNING"


class AlertSeverity(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


class CreditAlert(BaseModel):
    type: AlertType
    severity: AlertSeverity
    customer_id: UUID
    customer_name: str
    message: str
    sale_id: Optional[UUID] = None
    folio: Optional[str] = None
    amount: Optional[Decimal] = None
    due_date: Optional[date] = None
    days: Optional[int] = None
    usage_percent: Optional[Decimal] = None


class CreditAlertsResponse(BaseModel):
    alerts: List[CreditAlert]
    total: int
    high: int
    medium: int


class CollectionsByMethod(BaseModel):
    payment_method: PaymentMethod
    count: int
    amount: Decimal


class CollectionsSummaryResponse(BaseModel):
    period_start: date
    period_end: date
    total_collected: Decimal
    payments_count: int
    credit_sales_total: Decimal
    credit_sales_count: int
    collection_rate: Optional[Decimal] = Field(None, description="Cobrado / vendido a crédito * 100")
    by_method: List[CollectionsByMethod]
