from app.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, Date, ForeignKey, Numeric, Text, UniqueConstraint, CheckConstraint, Enum, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, utcnow
import enum


class SaleStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIAL_REFUND = "PARTIAL_REFUND"


class PaymentMethod(str, enum.Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA = "TARJETA"
    TRANSFERENCIA = "TRANSFERENCIA"
    CREDITO = "CREDITO"


class PaymentStatus(str, enum.Enum):
    PAID = "PAID"
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    OVERDUE = "OVERDUE"


class SourceType(str, enum.Enum):
    QUOTATION = "QUOTATION"
    ONLINE_ORDER = "ONLINE_ORDER"


class CancellationType(str, enum.Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


# Estados desde los que una venta ya no puede cancelarse ni recibir pagos
CLOSED_SALE_STATUSES = (SaleStatus.CANCELLED, SaleStatus.REFUNDED)


class Sale(Base, TenantMixin, TimestampMixin):
    __tablename__ = "sales"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    folio = Column(String(30), nullable=False)  # VTA-######

    # References
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=True, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True)

    # Documento de origen (cotización / pedido en línea)
    source_type = Column(Enum(SourceType), nullable=True)
    source_id = Column(Uuid(as_uuid=True), nullable=True)

    # Totals
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)

    payment_method = Column(Enum(PaymentMethod), nullable=False)
    status = Column(Enum(SaleStatus), nullable=False, default=SaleStatus.COMPLETED)

    # Cartera: amount_paid + remaining_balance == total
    amount_paid = Column(Numeric(15, 2), nullable=False, default=0)
    remaining_balance = Column(Numeric(15, 2), nullable=False, default=0)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PAID)
    due_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)

    # Relationships
    customer = relationship("Customer", back_populates="sales")
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")
    cancellations = relationship("SaleCancellation", back_populates="sale", order_by="SaleCancellation.cancelled_at")
    payments = relationship("CustomerPayment", back_populates="sale")

    __table_args__ = (
        UniqueConstraint("tenant_id", "folio", name="uq_sale_tenant_folio"),
        # Un documento de origen produce como máximo una venta
        UniqueConstraint("tenant_id", "source_type", "source_id", name="uq_sale_tenant_source"),
        CheckConstraint("remaining_balance >= 0", name="ck_sale_remaining_non_negative"),
    )


class SaleItem(Base, TimestampMixin):
    __tablename__ = "sale_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False)  # quantity * unit_price - discount

    # Relationships
    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_sale_item_unit_price_non_negative"),
    )


class SaleCancellation(Base, TenantMixin):
    __tablename__ = "sale_cancellations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=False, index=True)
    cancellation_type = Column(Enum(CancellationType), nullable=False)
    reason = Column(String(255), nullable=False)
    refund_amount = Column(Numeric(15, 2), nullable=False, default=0)
    # Saldo a crédito liberado y parte efectivamente descontada de current_debt
    released_balance = Column(Numeric(15, 2), nullable=False, default=0)
    debt_released = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    cancelled_by = Column(Uuid(as_uuid=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    sale = relationship("Sale", back_populates="cancellations")

    __table_args__ = (
        CheckConstraint("refund_amount >= 0", name="ck_cancellation_refund_non_negative"),
        CheckConstraint("debt_released >= 0 AND debt_released <= released_balance", name="ck_cancellation_debt_released"),
    )
