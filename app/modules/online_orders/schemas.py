from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, List, Any, Dict
from uuid import UUID
from decimal import Decimal
from datetime import datetime

from app.modules.online_orders.models import (
    OrderType, OrderStatus, OrderPaymentMethod, OrderPaymentStatus
)
from app.modules.payments.schemas import CardData


class OnlineOrderItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., gt=0)


class OnlineOrderCreate(BaseModel):
    type: OrderType = OrderType.SALE
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: EmailStr
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_address: Optional[str] = None
    notes: Optional[str] = None
    payment_method: OrderPaymentMethod = OrderPaymentMethod.CASH_ON_DELIVERY
    items: List[OnlineOrderItemCreate] = Field(..., min_length=1)


class OnlineOrderPayment(BaseModel):
    card: CardData


class OnlineOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    type: OrderType
    status: OrderStatus
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    notes: Optional[str] = None
    items: List[Dict[str, Any]]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: OrderPaymentMethod
    payment_status: OrderPaymentStatus
    payment_reference: Optional[str] = None
    payment_error: Optional[str] = None
    customer_id: Optional[UUID] = None
    sale_id: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
