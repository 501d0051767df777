from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Numeric, UniqueConstraint, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


class MovementType(str, enum.Enum):
    ENTRADA = "ENTRADA"          # Entrada de mercancía / ajuste positivo
    SALIDA = "SALIDA"            # Salida por venta / ajuste negativo
    CANCEL_SALE = "CANCEL_SALE"  # Reversión por cancelación de venta


class Product(Base, TenantMixin, TimestampMixin):
    __tablename__ = "products"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    sku = Column(String(50), nullable=False)
    price = Column(Numeric(15, 2), nullable=False, default=0)  # Precio de venta
    cost = Column(Numeric(15, 2), nullable=False, default=0)   # Costo
    # Solo el StockLedger escribe esta columna
    stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)  # Cantidad mínima para alertas
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    movements = relationship("InventoryMovement", back_populates="product")

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )


class InventoryMovement(Base, TenantMixin, TimestampMixin):
    """Registro de auditoría de movimientos de stock (solo inserción)."""
    __tablename__ = "inventory_movements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=True, index=True)

    type = Column(String(20), nullable=False)  # ENTRADA, SALIDA, CANCEL_SALE
    quantity = Column(Integer, nullable=False)  # Siempre positivo, el tipo define el signo
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)

    user_id = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    product = relationship("Product", back_populates="movements")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
    )
