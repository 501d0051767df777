from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.quotations.models import QuotationStatus


class QuotationItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Por defecto el precio del producto")
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    description: Optional[str] = Field(None, max_length=200)


class QuotationCreate(BaseModel):
    customer_id: UUID
    items: List[QuotationItemCreate] = Field(..., min_length=1)
    valid_until: Optional[datetime] = None
    notes: Optional[str] = None


class QuotationStatusUpdate(BaseModel):
    status: QuotationStatus


class QuotationItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    description: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    subtotal: Decimal


class QuotationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quotation_number: str
    customer_id: UUID
    status: QuotationStatus
    valid_until: datetime
    notes: Optional[str] = None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    converted_to_sale_id: Optional[UUID] = None
    converted_at: Optional[datetime] = None
    created_at: datetime
    items: List[QuotationItemOut] = []
