from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.tenancy import TenantContext, TenantRepository
from app.dependencies.tenantDependencies import TenantDependencies
from app.database.database import get_async_db
from app.modules.payments.service import PaymentLedger
from app.modules.payments.schemas import CustomerPaymentCreate, PaymentResult

payments_router = APIRouter(prefix="/customer-payments", tags=["Customer Payments"])


@payments_router.post("", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
async def create_customer_payment(
    payment_data: CustomerPaymentCreate,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(["owner", "admin", "seller", "accountant"]))
):
    """Registrar un abono de cliente (a una venta, general o distribuido)."""
    service = PaymentLedger(TenantRepository(db, auth_context))
    return await service.apply_payment(
        customer_id=payment_data.customer_id,
        amount=payment_data.amount,
        payment_method=payment_data.payment_method,
        sale_id=payment_data.sale_id,
        reference=payment_data.reference,
        payment_date=payment_data.payment_date,
        notes=payment_data.notes,
        distribute=payment_data.distribute
    )


@payments_router.post("/mark-overdue")
async def mark_overdue_sales(
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_owner_or_admin())
):
    """Marcar como vencidas las ventas a crédito con fecha límite pasada."""
    service = PaymentLedger(TenantRepository(db, auth_context))
    updated = await service.mark_overdue_sales()
    return {"updated": updated}
