from fastapi import APIRouter, Depends, status
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.tenancy import TenantContext, TenantRepository
from app.dependencies.tenantDependencies import TenantDependencies
from app.database.database import get_async_db
from app.modules.online_orders.service import OnlineOrderService
from app.modules.online_orders.schemas import OnlineOrderCreate, OnlineOrderOut, OnlineOrderPayment
from app.modules.payments.gateway import PaymentGateway, get_payment_gateway
from app.modules.sales.fulfillment import FulfillmentService
from app.modules.sales.schemas import SaleOut

online_orders_router = APIRouter(prefix="/online-orders", tags=["Online Orders"])


@online_orders_router.post("", response_model=OnlineOrderOut, status_code=status.HTTP_201_CREATED)
async def create_online_order(
    order_data: OnlineOrderCreate,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(["owner", "admin", "seller"]))
):
    """Registrar un pedido de la tienda en línea."""
    service = OnlineOrderService(TenantRepository(db, auth_context))
    return await service.create_order(order_data)


@online_orders_router.get("/{order_id}", response_model=OnlineOrderOut)
async def get_online_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    auth_context: TenantContext = Depends(TenantDependencies.require_any_role())
):
    service = OnlineOrderService(TenantRepository(db, auth_context))
    return await service.get_order(order_id)


@online_orders_router.post("/{order_id}/pay", response_model=SaleOut)
async def pay_online_order(
    order_id: UUID,
    payment_data: OnlineOrderPayment,
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    auth_context: TenantContext = Depends(TenantDependencies.require_role(["owner", "admin", "seller"]))
):
    """Cobrar el pedido con tarjeta y convertirlo en venta."""
    service = FulfillmentService(TenantRepository(db, auth_context))
    return await service.process_card_payment(order_id, payment_data.card, gateway)
