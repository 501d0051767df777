"""
Tests para el StockLedger

Cubren:
- Entradas y salidas con registro de movimiento
- Escritura condicional (nunca stock negativo)
- Aislamiento multi-tenant
- Endpoints de movimientos
"""

import pytest
from uuid import uuid4

from app.common.exceptions import InsufficientStockError, NotFoundError, ValidationError
from app.common.tenancy import TenantRepository
from app.modules.inventory.schemas import InventoryMovementCreate
from app.modules.inventory.service import StockLedger
from app.modules.products.models import InventoryMovement, MovementType, Product


# ===== TESTS DEL LEDGER =====

class TestApplyMovement:
    """Tests para apply_movement"""

    async def test_entrada_increments_stock_and_records_movement(self, repo, make_product):
        product = await make_product(stock=5)
        ledger = StockLedger(repo)

        result = await ledger.apply_movement(product.id, MovementType.ENTRADA, 3, reason="Compra")
        await repo.commit()

        assert result.previous_stock == 5
        assert result.new_stock == 8
        assert product.stock == 8

        movement = await repo.get(InventoryMovement, result.movement_id)
        assert movement.type == MovementType.ENTRADA.value
        assert movement.quantity == 3
        assert movement.previous_stock == 5
        assert movement.new_stock == 8
        assert movement.user_id == repo.user_id

    async def test_salida_decrements_stock(self, repo, make_product):
        product = await make_product(stock=5)
        ledger = StockLedger(repo)

        result = await ledger.apply_movement(product.id, MovementType.SALIDA, 5)
        await repo.commit()

        assert result.previous_stock == 5
        assert result.new_stock == 0

    async def test_salida_insufficient_stock_leaves_stock_untouched(self, repo, db_session, make_product):
        product = await make_product(stock=2)
        ledger = StockLedger(repo)

        with pytest.raises(InsufficientStockError) as exc_info:
            await ledger.apply_movement(product.id, MovementType.SALIDA, 3)
        await repo.rollback()

        assert exc_info.value.detail["code"] == "INSUFFICIENT_STOCK"
        assert exc_info.value.detail["available"] == 2
        assert exc_info.value.detail["requested"] == 3

        await db_session.refresh(product)
        assert product.stock == 2
        movements = await repo.all(repo.select(InventoryMovement))
        assert movements == []

    async def test_quantity_must_be_positive(self, repo, make_product):
        product = await make_product(stock=2)
        ledger = StockLedger(repo)

        with pytest.raises(ValidationError):
            await ledger.apply_movement(product.id, MovementType.ENTRADA, 0)

    async def test_unknown_product_is_not_found(self, repo):
        ledger = StockLedger(repo)

        with pytest.raises(NotFoundError):
            await ledger.apply_movement(uuid4(), MovementType.ENTRADA, 1)

    async def test_other_tenant_product_is_not_found(self, repo, other_repo, db_session, make_product):
        foreign = await make_product(stock=10, target_repo=other_repo)
        ledger = StockLedger(repo)

        with pytest.raises(NotFoundError):
            await ledger.apply_movement(foreign.id, MovementType.SALIDA, 1)
        await repo.rollback()

        await db_session.refresh(foreign)
        assert foreign.stock == 10


class TestConcurrentSalida:
    """Dos salidas de 4 unidades sobre stock 5: solo una puede aplicarse"""

    async def test_second_salida_fails_and_stock_never_negative(self, session_factory, tenant_context, make_product):
        product = await make_product(stock=5)

        async with session_factory() as first, session_factory() as second:
            first_repo = TenantRepository(first, tenant_context)
            second_repo = TenantRepository(second, tenant_context)

            # La segunda sesión ya leyó stock=5 antes de que la primera confirme
            stale = await second_repo.get(Product, product.id)
            assert stale.stock == 5

            await StockLedger(first_repo).apply_movement(product.id, MovementType.SALIDA, 4)
            await first_repo.commit()

            with pytest.raises(InsufficientStockError):
                await StockLedger(second_repo).apply_movement(product.id, MovementType.SALIDA, 4)
            await second_repo.rollback()

        async with session_factory() as check:
            current = await TenantRepository(check, tenant_context).get(Product, product.id)
            assert current.stock == 1


class TestRecordMovement:
    """Ajustes manuales con commit propio"""

    async def test_record_movement_commits(self, repo, make_product):
        product = await make_product(stock=1)
        ledger = StockLedger(repo)

        movement = await ledger.record_movement(InventoryMovementCreate(
            product_id=product.id, type=MovementType.ENTRADA, quantity=4, reason="Conteo físico"
        ))

        assert movement.new_stock == 5
        assert movement.reason == "Conteo físico"

    async def test_cancel_sale_type_rejected(self, repo, make_product):
        product = await make_product(stock=1)

        with pytest.raises(ValidationError):
            await StockLedger(repo).record_movement(InventoryMovementCreate(
                product_id=product.id, type=MovementType.CANCEL_SALE, quantity=1
            ))

    async def test_list_movements_filters_by_product(self, repo, make_product):
        first = await make_product(stock=1)
        second = await make_product(stock=1)
        ledger = StockLedger(repo)
        await ledger.record_movement(InventoryMovementCreate(product_id=first.id, type=MovementType.ENTRADA, quantity=1))
        await ledger.record_movement(InventoryMovementCreate(product_id=second.id, type=MovementType.ENTRADA, quantity=2))

        result = await ledger.list_movements(product_id=second.id)

        assert result.total == 1
        assert result.movements[0].quantity == 2


# ===== TESTS DE API =====

class TestMovementsAPI:
    """Tests de endpoints /inventory/movements"""

    async def test_create_movement_endpoint(self, client, auth_headers, make_product):
        product = await make_product(stock=3)

        response = await client.post("/inventory/movements", headers=auth_headers, json={
            "product_id": str(product.id), "type": "SALIDA", "quantity": 2, "reason": "Merma"
        })

        assert response.status_code == 201
        assert response.json()["new_stock"] == 1

    async def test_create_movement_insufficient_stock(self, client, auth_headers, make_product):
        product = await make_product(stock=1)

        response = await client.post("/inventory/movements", headers=auth_headers, json={
            "product_id": str(product.id), "type": "SALIDA", "quantity": 2
        })

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INSUFFICIENT_STOCK"

    async def test_seller_cannot_adjust_stock(self, client, seller_headers, make_product):
        product = await make_product(stock=1)

        response = await client.post("/inventory/movements", headers=seller_headers, json={
            "product_id": str(product.id), "type": "ENTRADA", "quantity": 2
        })

        assert response.status_code == 403

    async def test_requires_token(self, client):
        response = await client.get("/inventory/movements")
        assert response.status_code in (401, 403)
