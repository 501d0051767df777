"""
Tests para el módulo de Ventas

Cubren:
- Conversión de cotizaciones a venta (contado y crédito)
- Validaciones de estado y de stock previas a la conversión
- Cancelaciones totales y parciales
- Endpoints /sales
"""

import pytest
from types import SimpleNamespace
from datetime import datetime, timedelta, timezone, date
from decimal import Decimal
from uuid import uuid4

from app.core.config import settings
from app.common.tenancy import TenantRepository
from app.common.exceptions import (
    AlreadyCancelledError, AlreadyConvertedError, ExpiredError, FolioConflictError,
    InvalidAmountError, InvalidStateError, NotFoundError, StockError, ValidationError
)
from app.modules.customers.models import Customer
from app.modules.inventory.service import StockLedger
from app.modules.products.models import InventoryMovement, MovementType, Product
from app.modules.quotations.models import Quotation, QuotationStatus
from app.modules.quotations.schemas import QuotationCreate, QuotationItemCreate
from app.modules.quotations.service import QuotationService
from app.modules.sales.cancellation import CancellationService
from app.modules.sales.fulfillment import FulfillmentService
from app.modules.sales.models import (
    Sale, SaleStatus, PaymentMethod, PaymentStatus, SourceType, CancellationType
)
from app.modules.sales.schemas import PaymentDecision, RestockItem
from conftest import make_token


CREDITO = PaymentDecision(payment_method=PaymentMethod.CREDITO)
EFECTIVO = PaymentDecision(payment_method=PaymentMethod.EFECTIVO)


def assert_balance_invariant(sale):
    assert abs(sale.amount_paid + sale.remaining_balance - sale.total) <= Decimal("0.01")


# ===== FIXTURES =====

@pytest.fixture
async def scenario_a(repo, make_product, make_customer):
    """Cotización con 3 x $100 y 1 x $50, IVA 16%"""
    drill = await make_product(name="Taladro", price="100.00", stock=10)
    bit = await make_product(name="Broca", price="50.00", stock=5)
    customer = await make_customer(name="Ferretería Norte", credit_limit="5000")
    quotation = await QuotationService(repo).create_quotation(QuotationCreate(
        customer_id=customer.id,
        items=[
            QuotationItemCreate(product_id=drill.id, quantity=3),
            QuotationItemCreate(product_id=bit.id, quantity=1),
        ]
    ))
    return SimpleNamespace(drill=drill, bit=bit, customer=customer, quotation=quotation)


@pytest.fixture
async def credit_sale(repo, scenario_a):
    sale = await FulfillmentService(repo).convert_to_sale(
        scenario_a.quotation.id, SourceType.QUOTATION, CREDITO
    )
    scenario_a.sale = sale
    return scenario_a


# ===== TESTS DE CONVERSIÓN =====

class TestQuotationConversion:
    """Conversión de cotizaciones a venta"""

    async def test_scenario_a_credit_conversion(self, repo, db_session, scenario_a):
        """Venta a crédito: saldo pendiente, deuda del cliente y salidas de inventario"""
        assert scenario_a.quotation.subtotal == Decimal("350.00")
        assert scenario_a.quotation.tax == Decimal("56.00")
        assert scenario_a.quotation.total == Decimal("406.00")

        sale = await FulfillmentService(repo).convert_to_sale(
            scenario_a.quotation.id, SourceType.QUOTATION, CREDITO
        )

        assert sale.folio == "VTA-000001"
        assert sale.status == SaleStatus.COMPLETED
        assert sale.total == Decimal("406.00")
        assert sale.remaining_balance == Decimal("406.00")
        assert sale.amount_paid == Decimal("0.00")
        assert sale.payment_status == PaymentStatus.PENDING
        assert sale.due_date == (datetime.now(timezone.utc) + timedelta(days=settings.DEFAULT_CREDIT_DAYS)).date()
        assert sum(item.total for item in sale.items) == sale.subtotal
        assert_balance_invariant(sale)

        await db_session.refresh(scenario_a.customer)
        assert scenario_a.customer.current_debt == Decimal("406.00")

        movements = await StockLedger(repo).list_movements(sale_id=sale.id)
        assert movements.total == 2
        assert sorted(m.quantity for m in movements.movements) == [1, 3]
        assert all(m.type == MovementType.SALIDA for m in movements.movements)
        assert all(m.reason.startswith(f"Venta {sale.folio} - Cotización COT-") for m in movements.movements)

        await db_session.refresh(scenario_a.drill)
        await db_session.refresh(scenario_a.bit)
        assert scenario_a.drill.stock == 7
        assert scenario_a.bit.stock == 4

        quotation = await repo.get(Quotation, scenario_a.quotation.id)
        assert quotation.status == QuotationStatus.CONVERTED
        assert quotation.converted_to_sale_id == sale.id
        assert quotation.converted_at is not None

    async def test_cash_conversion_is_paid(self, repo, db_session, scenario_a):
        sale = await FulfillmentService(repo).convert_to_sale(
            scenario_a.quotation.id, SourceType.QUOTATION, EFECTIVO
        )

        assert sale.payment_status == PaymentStatus.PAID
        assert sale.amount_paid == sale.total
        assert sale.remaining_balance == Decimal("0.00")
        assert sale.due_date is None

        await db_session.refresh(scenario_a.customer)
        assert scenario_a.customer.current_debt == Decimal("0.00")

    async def test_explicit_due_date_is_kept(self, repo, scenario_a):
        due = date.today() + timedelta(days=45)
        sale = await FulfillmentService(repo).convert_to_sale(
            scenario_a.quotation.id, SourceType.QUOTATION,
            PaymentDecision(payment_method=PaymentMethod.CREDITO, due_date=due)
        )
        assert sale.due_date == due

    async def test_convert_twice_is_already_converted(self, repo, db_session, credit_sale):
        with pytest.raises(AlreadyConvertedError) as exc_info:
            await FulfillmentService(repo).convert_to_sale(
                credit_sale.quotation.id, SourceType.QUOTATION, CREDITO
            )
        assert exc_info.value.detail["code"] == "ALREADY_CONVERTED"

        await db_session.refresh(credit_sale.customer)
        await db_session.refresh(credit_sale.drill)
        assert credit_sale.customer.current_debt == Decimal("406.00")
        assert credit_sale.drill.stock == 7
        sales = await repo.all(repo.select(Sale))
        assert len(sales) == 1

    async def test_insufficient_stock_aborts_and_lists_every_line(
        self, repo, session_factory, tenant_context, make_product, make_customer
    ):
        short_a = await make_product(name="Martillo", stock=1)
        short_b = await make_product(name="Pinzas", stock=0)
        enough = await make_product(name="Cinta", stock=50)
        customer = await make_customer()
        short_ids = {str(short_a.id), str(short_b.id)}
        enough_id, customer_id = enough.id, customer.id
        quotation = await QuotationService(repo).create_quotation(QuotationCreate(
            customer_id=customer.id,
            items=[
                QuotationItemCreate(product_id=short_a.id, quantity=2),
                QuotationItemCreate(product_id=enough.id, quantity=5),
                QuotationItemCreate(product_id=short_b.id, quantity=1),
            ]
        ))

        with pytest.raises(StockError) as exc_info:
            await FulfillmentService(repo).convert_to_sale(quotation.id, SourceType.QUOTATION, CREDITO)

        lines = exc_info.value.detail["lines"]
        assert exc_info.value.detail["code"] == "STOCK_ERROR"
        assert {line["product_id"] for line in lines} == short_ids
        assert {line["available"] for line in lines} == {0, 1}

        # Lectura con una sesión nueva: la transacción fallida no dejó rastro
        async with session_factory() as session:
            check = TenantRepository(session, tenant_context)
            assert await check.all(check.select(Sale)) == []
            assert await check.all(check.select(InventoryMovement)) == []
            assert (await check.get(Customer, customer_id)).current_debt == Decimal("0.00")
            assert (await check.get(Product, enough_id)).stock == 50
            assert (await check.get(Quotation, quotation.id)).status == QuotationStatus.DRAFT

    async def test_expired_quotation(self, repo, make_product, make_customer):
        product = await make_product(stock=5)
        customer = await make_customer()
        quotation = await QuotationService(repo).create_quotation(QuotationCreate(
            customer_id=customer.id,
            items=[QuotationItemCreate(product_id=product.id, quantity=1)],
            valid_until=datetime.now(timezone.utc) - timedelta(days=1)
        ))

        with pytest.raises(ExpiredError):
            await FulfillmentService(repo).convert_to_sale(quotation.id, SourceType.QUOTATION, EFECTIVO)

    async def test_cancelled_quotation_is_invalid_state(self, repo, scenario_a):
        await QuotationService(repo).change_status(scenario_a.quotation.id, QuotationStatus.CANCELLED)

        with pytest.raises(InvalidStateError):
            await FulfillmentService(repo).convert_to_sale(
                scenario_a.quotation.id, SourceType.QUOTATION, EFECTIVO
            )

    async def test_quotation_requires_payment_method(self, repo, scenario_a):
        with pytest.raises(ValidationError):
            await FulfillmentService(repo).convert_to_sale(
                scenario_a.quotation.id, SourceType.QUOTATION, PaymentDecision()
            )

    async def test_other_tenant_quotation_is_not_found(self, other_repo, scenario_a):
        with pytest.raises(NotFoundError):
            await FulfillmentService(other_repo).convert_to_sale(
                scenario_a.quotation.id, SourceType.QUOTATION, EFECTIVO
            )

    async def test_folio_collision_is_retryable_conflict(
        self, repo, session_factory, tenant_context, scenario_a, make_credit_sale
    ):
        await make_credit_sale(scenario_a.customer, folio="VTA-000002",
                               created_at=datetime.now(timezone.utc) - timedelta(days=3))
        await make_credit_sale(scenario_a.customer, folio="VTA-000001")
        drill_id = scenario_a.drill.id

        with pytest.raises(FolioConflictError) as exc_info:
            await FulfillmentService(repo).convert_to_sale(
                scenario_a.quotation.id, SourceType.QUOTATION, EFECTIVO
            )

        assert exc_info.value.detail["retryable"] is True
        assert exc_info.value.detail["folio"] == "VTA-000002"

        async with session_factory() as session:
            check = TenantRepository(session, tenant_context)
            assert (await check.get(Product, drill_id)).stock == 10
            folios = await check.all(check.select(Sale, Sale.folio))
            assert sorted(folios) == ["VTA-000001", "VTA-000002"]
            stored = await check.get(Quotation, scenario_a.quotation.id)
            assert stored.converted_to_sale_id is None

    async def test_concurrent_conversion_hits_source_constraint(
        self, repo, session_factory, tenant_context, scenario_a
    ):
        # Otra transacción ya confirmó la venta de esta cotización sin marcarla todavía
        repo.add(Sale(
            folio="VTA-000001",
            customer_id=scenario_a.customer.id,
            source_type=SourceType.QUOTATION,
            source_id=scenario_a.quotation.id,
            subtotal=Decimal("350.00"), tax=Decimal("56.00"), total=Decimal("406.00"),
            payment_method=PaymentMethod.EFECTIVO,
            amount_paid=Decimal("406.00"), remaining_balance=Decimal("0.00"),
            payment_status=PaymentStatus.PAID
        ))
        await repo.commit()
        customer_id, drill_id = scenario_a.customer.id, scenario_a.drill.id

        with pytest.raises(AlreadyConvertedError) as exc_info:
            await FulfillmentService(repo).convert_to_sale(
                scenario_a.quotation.id, SourceType.QUOTATION, CREDITO
            )

        assert exc_info.value.detail["code"] == "ALREADY_CONVERTED"
        async with session_factory() as session:
            check = TenantRepository(session, tenant_context)
            assert await check.all(check.select(Sale, Sale.folio)) == ["VTA-000001"]
            assert (await check.get(Customer, customer_id)).current_debt == Decimal("0.00")
            assert (await check.get(Product, drill_id)).stock == 10


# ===== TESTS DE CANCELACIÓN =====

class TestCancellation:
    """Cancelaciones totales y parciales"""

    async def test_full_cancellation_locks_customer_before_sale(self, repo, monkeypatch, credit_sale):
        locked = []
        original_get = repo.get

        async def recording_get(model, obj_id, **kwargs):
            if kwargs.get("for_update"):
                locked.append(model.__name__)
            return await original_get(model, obj_id, **kwargs)

        monkeypatch.setattr(repo, "get", recording_get)
        cancellation = await CancellationService(repo).cancel(
            credit_sale.sale.id, CancellationType.FULL, "Cliente desistió"
        )

        assert locked[:2] == ["Customer", "Sale"]
        assert cancellation.released_balance == Decimal("406.00")
        assert cancellation.debt_released == Decimal("406.00")

    async def test_scenario_e_full_cancellation_restores_stock(self, repo, db_session, credit_sale):
        cancellation = await CancellationService(repo).cancel(
            credit_sale.sale.id, CancellationType.FULL, "Cliente desistió"
        )

        assert cancellation.cancellation_type == CancellationType.FULL
        assert cancellation.refund_amount == Decimal("0.00")

        sale = await repo.get(Sale, credit_sale.sale.id)
        await db_session.refresh(sale)
        assert sale.status == SaleStatus.CANCELLED
        assert_balance_invariant(sale)

        await db_session.refresh(credit_sale.drill)
        await db_session.refresh(credit_sale.bit)
        assert credit_sale.drill.stock == 10
        assert credit_sale.bit.stock == 5

        movements = await StockLedger(repo).list_movements(
            sale_id=sale.id, movement_type=MovementType.CANCEL_SALE
        )
        assert sorted(m.quantity for m in movements.movements) == [1, 3]

        await db_session.refresh(credit_sale.customer)
        assert credit_sale.customer.current_debt == Decimal("0.00")

    async def test_full_cancellation_with_refund_is_refunded(self, repo, db_session, scenario_a):
        sale = await FulfillmentService(repo).convert_to_sale(
            scenario_a.quotation.id, SourceType.QUOTATION, EFECTIVO
        )

        await CancellationService(repo).cancel(sale.id, CancellationType.FULL, "Devolución", Decimal("406.00"))

        stored = await repo.get(Sale, sale.id)
        await db_session.refresh(stored)
        assert stored.status == SaleStatus.REFUNDED

    async def test_cancel_twice_is_already_cancelled(self, repo, credit_sale):
        service = CancellationService(repo)
        await service.cancel(credit_sale.sale.id, CancellationType.FULL, "Error de captura")

        with pytest.raises(AlreadyCancelledError):
            await service.cancel(credit_sale.sale.id, CancellationType.FULL, "Otra vez")

    async def test_refund_above_total_is_invalid_amount(self, repo, db_session, credit_sale):
        with pytest.raises(InvalidAmountError):
            await CancellationService(repo).cancel(
                credit_sale.sale.id, CancellationType.FULL, "Reembolso", Decimal("500.00")
            )

        await db_session.refresh(credit_sale.drill)
        assert credit_sale.drill.stock == 7

    async def test_partial_cancellation_keeps_stock_and_debt(self, repo, db_session, credit_sale):
        cancellation = await CancellationService(repo).cancel(
            credit_sale.sale.id, CancellationType.PARTIAL, "Pieza dañada", Decimal("50.00")
        )

        assert cancellation.cancellation_type == CancellationType.PARTIAL
        sale = await repo.get(Sale, credit_sale.sale.id)
        await db_session.refresh(sale)
        assert sale.status == SaleStatus.PARTIAL_REFUND
        assert_balance_invariant(sale)

        await db_session.refresh(credit_sale.drill)
        await db_session.refresh(credit_sale.customer)
        assert credit_sale.drill.stock == 7
        assert credit_sale.customer.current_debt == Decimal("406.00")

    async def test_partial_restock_disabled_by_default(self, repo, credit_sale):
        with pytest.raises(ValidationError):
            await CancellationService(repo).cancel(
                credit_sale.sale.id, CancellationType.PARTIAL, "Devolución parcial",
                restock_items=[RestockItem(product_id=credit_sale.drill.id, quantity=1)]
            )

    async def test_partial_restock_when_enabled(self, repo, db_session, credit_sale, monkeypatch):
        monkeypatch.setattr(settings, "RESTOCK_ON_PARTIAL_CANCELLATION", True)
        service = CancellationService(repo)

        await service.cancel(
            credit_sale.sale.id, CancellationType.PARTIAL, "Devolución parcial",
            restock_items=[RestockItem(product_id=credit_sale.drill.id, quantity=2)]
        )
        await db_session.refresh(credit_sale.drill)
        assert credit_sale.drill.stock == 9

        # La cancelación total solo devuelve lo que falta
        await service.cancel(credit_sale.sale.id, CancellationType.FULL, "Cancelación final")
        await db_session.refresh(credit_sale.drill)
        await db_session.refresh(credit_sale.bit)
        assert credit_sale.drill.stock == 10
        assert credit_sale.bit.stock == 5

    async def test_partial_restock_above_sold_quantity(self, repo, credit_sale, monkeypatch):
        monkeypatch.setattr(settings, "RESTOCK_ON_PARTIAL_CANCELLATION", True)

        with pytest.raises(ValidationError):
            await CancellationService(repo).cancel(
                credit_sale.sale.id, CancellationType.PARTIAL, "Devolución",
                restock_items=[RestockItem(product_id=credit_sale.bit.id, quantity=2)]
            )

    async def test_list_cancellations(self, repo, credit_sale):
        service = CancellationService(repo)
        await service.cancel(credit_sale.sale.id, CancellationType.PARTIAL, "Parcial")

        cancellations = await service.list_cancellations(sale_id=credit_sale.sale.id)
        assert len(cancellations) == 1
        assert cancellations[0].reason == "Parcial"
        assert cancellations[0].cancelled_by == repo.user_id

    async def test_unknown_sale_is_not_found(self, repo):
        with pytest.raises(NotFoundError):
            await CancellationService(repo).cancel(uuid4(), CancellationType.FULL, "No existe")


# ===== TESTS DE API =====

class TestSalesAPI:
    """Tests de endpoints /sales"""

    async def _create_quotation(self, client, headers, customer, products):
        response = await client.post("/quotations", headers=headers, json={
            "customer_id": str(customer.id),
            "items": [{"product_id": str(p.id), "quantity": q} for p, q in products]
        })
        assert response.status_code == 201
        return response.json()

    async def test_convert_and_get_sale(self, client, auth_headers, make_product, make_customer):
        product = await make_product(price="200.00", stock=4)
        customer = await make_customer()
        quotation = await self._create_quotation(client, auth_headers, customer, [(product, 2)])

        response = await client.post("/sales/convert", headers=auth_headers, json={
            "source_id": quotation["id"], "source_kind": "QUOTATION", "payment_method": "CREDITO"
        })
        assert response.status_code == 201
        sale = response.json()
        assert sale["folio"] == "VTA-000001"
        assert Decimal(sale["remaining_balance"]) == Decimal("464.00")

        response = await client.get(f"/sales/{sale['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert len(response.json()["items"]) == 1

    async def test_convert_stock_error_lists_lines(self, client, auth_headers, make_product, make_customer):
        product = await make_product(stock=1)
        customer = await make_customer()
        quotation = await self._create_quotation(client, auth_headers, customer, [(product, 3)])

        response = await client.post("/sales/convert", headers=auth_headers, json={
            "source_id": quotation["id"], "source_kind": "QUOTATION", "payment_method": "EFECTIVO"
        })

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "STOCK_ERROR"
        assert detail["lines"][0]["requested"] == 3
        assert detail["lines"][0]["available"] == 1

    async def test_cancel_requires_owner_or_admin(self, client, auth_headers, seller_headers, make_product, make_customer):
        product = await make_product(stock=4)
        customer = await make_customer()
        quotation = await self._create_quotation(client, auth_headers, customer, [(product, 1)])
        sale = (await client.post("/sales/convert", headers=auth_headers, json={
            "source_id": quotation["id"], "source_kind": "QUOTATION", "payment_method": "EFECTIVO"
        })).json()

        body = {"cancellation_type": "FULL", "reason": "Error", "refund_amount": "0"}
        response = await client.post(f"/sales/{sale['id']}/cancel", headers=seller_headers, json=body)
        assert response.status_code == 403

        response = await client.post(f"/sales/{sale['id']}/cancel", headers=auth_headers, json=body)
        assert response.status_code == 201

        response = await client.get("/sales/cancellations", headers=auth_headers)
        assert len(response.json()) == 1

    async def test_other_tenant_sale_is_not_found(self, client, auth_headers, other_tenant_context, make_product, make_customer):
        product = await make_product(stock=4)
        customer = await make_customer()
        quotation = await self._create_quotation(client, auth_headers, customer, [(product, 1)])
        sale = (await client.post("/sales/convert", headers=auth_headers, json={
            "source_id": quotation["id"], "source_kind": "QUOTATION", "payment_method": "EFECTIVO"
        })).json()

        other_headers = {"Authorization": f"Bearer {make_token(other_tenant_context)}"}
        response = await client.get(f"/sales/{sale['id']}", headers=other_headers)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    async def test_company_header_must_match_token(self, client, auth_headers):
        headers = dict(auth_headers)
        headers["X-Company-ID"] = str(uuid4())

        response = await client.get("/sales", headers=headers)
        assert response.status_code == 403
