from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Text, UniqueConstraint, Enum, JSON, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


class OrderType(str, enum.Enum):
    QUOTE = "QUOTE"  # Solicitud de cotización, nunca genera venta
    SALE = "SALE"    # Compra


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class OrderPaymentMethod(str, enum.Enum):
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"  # Pago contra entrega
    CARD = "CARD"                          # Tarjeta vía pasarela


class OrderPaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class OnlineOrder(Base, TenantMixin, TimestampMixin):
    __tablename__ = "online_orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    order_number = Column(String(30), nullable=False)  # ON-YYMM-####
    type = Column(Enum(OrderType), nullable=False, default=OrderType.SALE)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    # Datos capturados en la tienda en línea
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(100), nullable=False)
    customer_phone = Column(String(50), nullable=True)
    customer_address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # [{product_id, product_name, quantity, price, subtotal}]
    items = Column(JSON, nullable=False, default=list)

    # Totals
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)

    # Pago
    payment_method = Column(Enum(OrderPaymentMethod), nullable=False, default=OrderPaymentMethod.CASH_ON_DELIVERY)
    payment_status = Column(Enum(OrderPaymentStatus), nullable=False, default=OrderPaymentStatus.PENDING)
    payment_reference = Column(String(100), nullable=True)  # transactionId de la pasarela
    payment_error = Column(String(255), nullable=True)

    # Conversión
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=True)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    customer = relationship("Customer")

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_online_order_tenant_number"),
    )
