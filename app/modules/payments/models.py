from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Text, CheckConstraint, Enum, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin, utcnow
from app.modules.sales.models import PaymentMethod


class CustomerPayment(Base, TenantMixin, TimestampMixin):
    """
    Abono de un cliente a su cartera.

    Inmutable: los pagos nunca se editan. `sale_id` nulo indica un pago a
    cuenta general (sin venta asignada).
    """
    __tablename__ = "customer_payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id"), nullable=True, index=True)

    amount = Column(Numeric(15, 2), nullable=False)
    # Lo que realmente se descontó de current_debt (el tope en cero puede absorber parte)
    debt_applied = Column(Numeric(15, 2), nullable=False, default=0)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    reference = Column(String(100), nullable=True)  # Número de referencia, transferencia, etc.
    payment_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    notes = Column(Text, nullable=True)

    user_id = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    customer = relationship("Customer", back_populates="payments")
    sale = relationship("Sale", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_customer_payment_amount_positive"),
        CheckConstraint("debt_applied >= 0 AND debt_applied <= amount", name="ck_customer_payment_debt_applied"),
    )
