from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, Numeric, Text, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin


class Customer(Base, TenantMixin, TimestampMixin):
    """
    Cliente de la empresa.

    `current_debt` es un agregado desnormalizado de la cartera del cliente;
    su único escritor es el PaymentLedger.
    """
    __tablename__ = "customers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Información básica
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(100), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    # Términos comerciales
    credit_limit = Column(Numeric(15, 2), nullable=False, default=0)
    current_debt = Column(Numeric(15, 2), nullable=False, default=0)
    payment_terms_days = Column(Integer, nullable=False, default=0)  # Días de plazo de pago

    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    sales = relationship("Sale", back_populates="customer")
    payments = relationship("CustomerPayment", back_populates="customer")

    __table_args__ = (
        CheckConstraint("credit_limit >= 0", name="ck_customer_credit_limit_non_negative"),
        CheckConstraint("current_debt >= 0", name="ck_customer_debt_non_negative"),
    )
