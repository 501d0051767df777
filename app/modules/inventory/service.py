from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import func, desc
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value
from fastapi import HTTPException

from app.common.exceptions import (
    InsufficientStockError, NotFoundError, ValidationError, InternalError
)
from app.common.tenancy import TenantRepository
from app.modules.products.models import Product, InventoryMovement, MovementType
from app.modules.inventory.schemas import (
    MovementResult, InventoryMovementCreate, InventoryMovementOut, InventoryMovementList
)

logger = logging.getLogger(__name__)


class StockLedger:
    """
    Libro de stock: único escritor de Product.stock.

    Cada movimiento actualiza el stock con un UPDATE condicional y escribe la
    fila de InventoryMovement en la misma transacción. El ledger no hace
    commit; la transacción pertenece al llamador.
    """

    def __init__(self, repo: TenantRepository):
        self.repo = repo

    async def apply_movement(
        self,
        product_id: UUID,
        movement_type: MovementType,
        quantity: int,
        reason: Optional[str] = None,
        sale_id: Optional[UUID] = None
    ) -> MovementResult:
        """Aplicar un movimiento de stock con su registro de auditoría."""
        movement_type = MovementType(movement_type)
        if quantity is None or quantity <= 0:
            raise ValidationError("La cantidad del movimiento debe ser mayor a cero")

        delta = -quantity if movement_type == MovementType.SALIDA else quantity

        stmt = self.repo.update(Product).where(Product.id == product_id)
        if movement_type == MovementType.SALIDA:
            # Escritura condicional: nunca deja el stock en negativo
            stmt = stmt.where(Product.stock >= quantity)
        stmt = stmt.values(stock=Product.stock + delta).execution_options(synchronize_session=False)

        result = await self.repo.execute(stmt)
        if result.rowcount == 0:
            available = await self._current_stock(product_id)
            if available is None:
                raise NotFoundError("Producto no encontrado")
            logger.warning(
                f"Insufficient stock for product {product_id}: available={available}, requested={quantity}"
            )
            raise InsufficientStockError(
                f"Stock insuficiente. Disponible: {available}, Solicitado: {quantity}",
                product_id=str(product_id),
                requested=quantity,
                available=available
            )

        new_stock = await self._current_stock(product_id)
        previous_stock = new_stock - delta

        movement = InventoryMovement(
            product_id=product_id,
            sale_id=sale_id,
            type=movement_type.value,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
            user_id=self.repo.user_id
        )
        self.repo.add(movement)
        await self.repo.flush()

        self._sync_loaded_product(product_id, new_stock)

        logger.info(
            f"Stock movement {movement_type.value} for product {product_id}: "
            f"{previous_stock} -> {new_stock}"
        )

        return MovementResult(
            movement_id=movement.id,
            product_id=product_id,
            type=movement_type,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            sale_id=sale_id
        )

    async def record_movement(self, movement_data: InventoryMovementCreate) -> InventoryMovementOut:
        """Ajuste manual de inventario (entrada o salida) con commit propio."""
        if movement_data.type == MovementType.CANCEL_SALE:
            raise ValidationError("Los movimientos CANCEL_SALE solo se generan al cancelar una venta")

        try:
            result = await self.apply_movement(
                product_id=movement_data.product_id,
                movement_type=movement_data.type,
                quantity=movement_data.quantity,
                reason=movement_data.reason or f"Ajuste manual ({movement_data.type.value})"
            )
            movement = await self.repo.get(InventoryMovement, result.movement_id, label="Movimiento")
            await self.repo.commit()
            return InventoryMovementOut.model_validate(movement)

        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error recording inventory movement: {str(e)}", exc_info=True)
            raise InternalError("Error registrando movimiento de inventario")

    async def list_movements(
        self,
        product_id: Optional[UUID] = None,
        movement_type: Optional[MovementType] = None,
        sale_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0
    ) -> InventoryMovementList:
        """Obtener movimientos con filtros."""
        query = self.repo.select(InventoryMovement)

        if product_id:
            query = query.where(InventoryMovement.product_id == product_id)
        if movement_type:
            query = query.where(InventoryMovement.type == MovementType(movement_type).value)
        if sale_id:
            query = query.where(InventoryMovement.sale_id == sale_id)

        total = await self.repo.scalar(query.with_only_columns(func.count()).order_by(None))
        movements = await self.repo.all(
            query.order_by(desc(InventoryMovement.created_at)).offset(offset).limit(limit)
        )

        return InventoryMovementList(
            movements=[InventoryMovementOut.model_validate(m) for m in movements],
            total=total or 0,
            limit=limit,
            offset=offset
        )

    async def _current_stock(self, product_id: UUID) -> Optional[int]:
        return await self.repo.scalar(
            self.repo.select(Product, Product.stock).where(Product.id == product_id)
        )

    def _sync_loaded_product(self, product_id: UUID, new_stock: int) -> None:
        """Refleja el nuevo stock en la instancia cargada en la sesión, si existe."""
        key = Session.identity_key(Product, product_id)
        product = self.repo.db.sync_session.identity_map.get(key)
        if product is not None:
            set_committed_value(product, "stock", new_stock)
