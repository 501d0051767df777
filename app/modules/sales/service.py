from typing import Optional
from uuid import UUID

from sqlalchemy import desc
from sqlalchemy.orm import selectinload

from app.common.tenancy import TenantRepository
from app.modules.sales.models import Sale, SaleStatus, PaymentStatus
from app.modules.sales.schemas import SaleOut


class SaleService:
    """Consultas de ventas."""

    def __init__(self, repo: TenantRepository):
        self.repo = repo

    async def get_sale(self, sale_id: UUID) -> SaleOut:
        sale = await self.repo.get(Sale, sale_id, options=(selectinload(Sale.items),), label="Venta")
        return SaleOut.model_validate(sale)

    async def list_sales(
        self,
        customer_id: Optional[UUID] = None,
        status: Optional[SaleStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0
    ):
        query = self.repo.select(Sale).options(selectinload(Sale.items))
        if customer_id:
            query = query.where(Sale.customer_id == customer_id)
        if status:
            query = query.where(Sale.status == status)
        if payment_status:
            query = query.where(Sale.payment_status == payment_status)

        sales = await self.repo.all(query.order_by(desc(Sale.created_at)).offset(offset).limit(limit))
        return [SaleOut.model_validate(s) for s in sales]
