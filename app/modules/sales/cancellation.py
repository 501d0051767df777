from typing import Dict, List, Optional
from uuid import UUID
from decimal import Decimal
import logging

from sqlalchemy import desc, func
from sqlalchemy.orm import selectinload
from fastapi import HTTPException

from app.core.config import settings
from app.common.exceptions import (
    AlreadyCancelledError, InvalidAmountError, ValidationError, InternalError
)
from app.common.mixins import utcnow
from app.common.money import ZERO, to_money
from app.common.tenancy import TenantRepository
from app.modules.customers.models import Customer
from app.modules.inventory.service import StockLedger
from app.modules.payments.service import PaymentLedger
from app.modules.products.models import InventoryMovement, MovementType
from app.modules.sales.models import (
    Sale, SaleCancellation, SaleStatus, CancellationType, PaymentMethod, CLOSED_SALE_STATUSES
)
from app.modules.sales.schemas import RestockItem, SaleCancellationOut

logger = logging.getLogger(__name__)


class CancellationService:
    def __init__(self, repo: TenantRepository):
        self.repo = repo
        self.stock = StockLedger(repo)
        self.ledger = PaymentLedger(repo)

    async def cancel(
        self,
        sale_id: UUID,
        cancellation_type: CancellationType,
        reason: str,
        refund_amount: Decimal = ZERO,
        restock_items: Optional[List[RestockItem]] = None,
        notes: Optional[str] = None
    ) -> SaleCancellationOut:
        """
        Cancelar una venta total o parcialmente.

        FULL devuelve al inventario todas las partidas y libera el saldo a
        crédito pendiente. PARTIAL solo cambia el estado; la devolución de
        stock depende de RESTOCK_ON_PARTIAL_CANCELLATION.
        """
        cancellation_type = CancellationType(cancellation_type)
        refund_amount = to_money(refund_amount)

        try:
            # Orden de bloqueo global: cliente -> venta -> productos
            pending = await self.repo.get(Sale, sale_id, label="Venta")
            if pending.customer_id is not None and pending.payment_method == PaymentMethod.CREDITO:
                await self.repo.get(Customer, pending.customer_id, for_update=True, label="Cliente")

            sale = await self.repo.get(
                Sale, sale_id,
                for_update=True,
                options=(selectinload(Sale.items),),
                label="Venta"
            )

            if sale.status in CLOSED_SALE_STATUSES:
                raise AlreadyCancelledError(f"La venta {sale.folio} ya está cancelada")
            if refund_amount < ZERO or refund_amount > to_money(sale.total):
                raise InvalidAmountError(
                    f"El monto de reembolso debe estar entre 0 y {to_money(sale.total)}"
                )

            movement_reason = f"Cancelación venta {sale.folio}: {reason}"
            released_balance = debt_released = ZERO

            if cancellation_type == CancellationType.FULL:
                restored = await self._restored_quantities(sale.id)
                for item in sorted(sale.items, key=lambda sale_item: str(sale_item.product_id)):
                    # Unidades ya devueltas en una cancelación parcial previa
                    already = min(restored.get(item.product_id, 0), item.quantity)
                    restored[item.product_id] = restored.get(item.product_id, 0) - already
                    if item.quantity - already <= 0:
                        continue
                    await self.stock.apply_movement(
                        product_id=item.product_id,
                        movement_type=MovementType.CANCEL_SALE,
                        quantity=item.quantity - already,
                        reason=movement_reason,
                        sale_id=sale.id
                    )
                released_balance, debt_released = await self.ledger.release_credit_sale(sale)
                sale.status = SaleStatus.REFUNDED if refund_amount > ZERO else SaleStatus.CANCELLED

            else:
                if restock_items:
                    await self._restock_partial(sale, restock_items, movement_reason)
                sale.status = SaleStatus.PARTIAL_REFUND

            cancellation = SaleCancellation(
                sale_id=sale.id,
                cancellation_type=cancellation_type,
                reason=reason,
                refund_amount=refund_amount,
                released_balance=released_balance,
                debt_released=debt_released,
                notes=notes,
                cancelled_by=self.repo.user_id,
                cancelled_at=utcnow()
            )
            self.repo.add(cancellation)

            await self.repo.flush()
            await self.repo.commit()

            logger.info(
                f"Sale {sale.folio} cancelled ({cancellation_type.value}, refund {refund_amount}) "
                f"-> {sale.status.value}"
            )
            return SaleCancellationOut.model_validate(cancellation)

        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error cancelling sale {sale_id}: {str(e)}", exc_info=True)
            raise InternalError("Error al cancelar la venta")

    async def list_cancellations(
        self,
        sale_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[SaleCancellationOut]:
        query = self.repo.select(SaleCancellation)
        if sale_id:
            query = query.where(SaleCancellation.sale_id == sale_id)

        cancellations = await self.repo.all(
            query.order_by(desc(SaleCancellation.cancelled_at)).offset(offset).limit(limit)
        )
        return [SaleCancellationOut.model_validate(c) for c in cancellations]

    async def _restored_quantities(self, sale_id: UUID) -> Dict[UUID, int]:
        rows = await self.repo.execute(
            self.repo.select(InventoryMovement, InventoryMovement.product_id, func.sum(InventoryMovement.quantity))
            .where(
                InventoryMovement.sale_id == sale_id,
                InventoryMovement.type == MovementType.CANCEL_SALE.value
            )
            .group_by(InventoryMovement.product_id)
        )
        return {product_id: int(quantity) for product_id, quantity in rows.all()}

    async def _restock_partial(self, sale: Sale, restock_items: List[RestockItem], reason: str) -> None:
        if not settings.RESTOCK_ON_PARTIAL_CANCELLATION:
            raise ValidationError(
                "La devolución de inventario en cancelaciones parciales no está habilitada; "
                "registre un ajuste de inventario por separado"
            )

        restored = await self._restored_quantities(sale.id)
        returnable: Dict[UUID, int] = {}
        for item in sale.items:
            returnable[item.product_id] = returnable.get(item.product_id, 0) + item.quantity
        for product_id, quantity in restored.items():
            returnable[product_id] = returnable.get(product_id, 0) - quantity

        requested: Dict[UUID, int] = {}
        for item in restock_items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        for product_id, quantity in requested.items():
            if quantity > returnable.get(product_id, 0):
                raise ValidationError(
                    f"No se pueden devolver {quantity} unidades del producto {product_id}: "
                    f"quedan {max(returnable.get(product_id, 0), 0)} por devolver"
                )

        for product_id, quantity in sorted(requested.items(), key=lambda entry: str(entry[0])):
            await self.stock.apply_movement(
                product_id=product_id,
                movement_type=MovementType.CANCEL_SALE,
                quantity=quantity,
                reason=reason,
                sale_id=sale.id
            )
