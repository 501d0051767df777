from app.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Text, UniqueConstraint, Enum, Uuid
from sqlalchemy.orm import relationship, validates
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


class QuotationStatus(str, enum.Enum):
    DRAFT = "DRAFT"          # Borrador
    SENT = "SENT"            # Enviada al cliente
    CONVERTED = "CONVERTED"  # Convertida a venta (terminal)
    EXPIRED = "EXPIRED"      # Vencida (terminal)
    CANCELLED = "CANCELLED"  # Cancelada (terminal)


class Quotation(Base, TenantMixin, TimestampMixin):
    __tablename__ = "quotations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    quotation_number = Column(String(30), nullable=False)  # COT-YYMM-####
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), nullable=True)

    status = Column(Enum(QuotationStatus), nullable=False, default=QuotationStatus.DRAFT)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)

    # Totals
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)

    # Conversión
    converted_to_sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=True)
    converted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    customer = relationship("Customer")
    items = relationship(
        "QuotationItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationItem.sort_order",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "quotation_number", name="uq_quotation_tenant_number"),
    )

    @validates("converted_to_sale_id")
    def _validate_converted_to_sale_id(self, key, value):
        current = self.__dict__.get("converted_to_sale_id")
        if current is not None and value != current:
            raise ValueError("La cotización ya está vinculada a una venta")
        return value


class QuotationItem(Base, TimestampMixin):
    __tablename__ = "quotation_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    quotation_id = Column(Uuid(as_uuid=True), ForeignKey("quotations.id"), nullable=False)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False)

    # Snapshot del producto al cotizar
    description = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(15, 2), nullable=False, default=0)
    subtotal = Column(Numeric(15, 2), nullable=False)  # quantity * unit_price - discount
    sort_order = Column(Integer, nullable=False, default=0)

    # Relationships
    quotation = relationship("Quotation", back_populates="items")
    product = relationship("Product")
