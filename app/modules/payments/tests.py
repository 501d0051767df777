"""
Tests para el libro de cartera (PaymentLedger) y la pasarela simulada
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import (
    AmountExceedsBalanceError, InvalidAmountError, InvalidStateError,
    NotFoundError, ValidationError
)
from app.modules.payments.gateway import MockPaymentGateway, DisabledPaymentGateway
from app.modules.payments.models import CustomerPayment
from app.modules.payments.schemas import CardData
from app.modules.payments.service import PaymentLedger
from app.modules.quotations.schemas import QuotationCreate, QuotationItemCreate
from app.modules.quotations.service import QuotationService
from app.modules.sales.cancellation import CancellationService
from app.modules.sales.fulfillment import FulfillmentService
from app.modules.sales.models import CancellationType, PaymentMethod, PaymentStatus, SaleStatus, SourceType
from app.modules.sales.schemas import PaymentDecision


def card(number="4242424242424242"):
    return CardData(number=number, holder_name="Ana López", exp_month=12, exp_year=2030, cvv="123")


@pytest.fixture
def credit_sale_of(repo, make_product):
    """Convierte a crédito una cotización de N unidades a $100 (+16% IVA)."""
    async def _convert(customer, quantity):
        product = await make_product(price="100.00", stock=quantity)
        quotation = await QuotationService(repo).create_quotation(QuotationCreate(
            customer_id=customer.id,
            items=[QuotationItemCreate(product_id=product.id, quantity=quantity)]
        ))
        return await FulfillmentService(repo).convert_to_sale(
            quotation.id, SourceType.QUOTATION, PaymentDecision(payment_method=PaymentMethod.CREDITO)
        )
    return _convert


# ===== ABONOS A VENTA =====

class TestApplyPaymentToSale:
    """Abonos asignados a una venta a crédito"""

    async def test_partial_then_full_payment(self, repo, db_session, make_customer, make_credit_sale):
        """1000 a crédito: abono de 400 deja 600 PARTIAL, abono de 600 liquida"""
        customer = await make_customer(credit_limit="5000", current_debt="1000")
        sale = await make_credit_sale(customer, total="1000.00")
        ledger = PaymentLedger(repo)

        result = await ledger.apply_payment(customer.id, Decimal("400"), PaymentMethod.EFECTIVO, sale_id=sale.id)

        assert result.sale.amount_paid == Decimal("400.00")
        assert result.sale.remaining_balance == Decimal("600.00")
        assert result.sale.payment_status == PaymentStatus.PARTIAL
        assert result.customer.current_debt == Decimal("600.00")
        assert len(result.payments) == 1
        assert result.payments[0].sale_id == sale.id

        result = await ledger.apply_payment(customer.id, Decimal("600"), PaymentMethod.TRANSFERENCIA, sale_id=sale.id)

        assert result.sale.remaining_balance == Decimal("0.00")
        assert result.sale.payment_status == PaymentStatus.PAID
        assert result.customer.current_debt == Decimal("0.00")
        assert result.sale.amount_paid + result.sale.remaining_balance == result.sale.total

    async def test_amount_exceeds_balance_changes_nothing(self, repo, db_session, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer, total="1000.00", amount_paid="400")

        with pytest.raises(AmountExceedsBalanceError) as exc_info:
            await PaymentLedger(repo).apply_payment(customer.id, Decimal("700"), PaymentMethod.EFECTIVO, sale_id=sale.id)

        assert exc_info.value.detail["remaining_balance"] == "600.00"
        await db_session.refresh(sale)
        await db_session.refresh(customer)
        assert sale.remaining_balance == Decimal("600.00")
        assert customer.current_debt == Decimal("1000.00")
        assert await repo.all(repo.select(CustomerPayment)) == []

    async def test_non_positive_amount(self, repo, make_customer):
        customer = await make_customer()

        with pytest.raises(InvalidAmountError):
            await PaymentLedger(repo).apply_payment(customer.id, Decimal("0"), PaymentMethod.EFECTIVO)

    async def test_credito_is_not_a_payment_method(self, repo, make_customer):
        customer = await make_customer(current_debt="100")

        with pytest.raises(ValidationError):
            await PaymentLedger(repo).apply_payment(customer.id, Decimal("10"), PaymentMethod.CREDITO)

    async def test_sale_of_another_customer_is_not_found(self, repo, make_customer, make_credit_sale):
        owner = await make_customer(current_debt="1000")
        other = await make_customer(current_debt="0")
        sale = await make_credit_sale(owner)

        with pytest.raises(NotFoundError):
            await PaymentLedger(repo).apply_payment(other.id, Decimal("10"), PaymentMethod.EFECTIVO, sale_id=sale.id)

    async def test_cancelled_sale_rejects_payments(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="0")
        sale = await make_credit_sale(customer, status=SaleStatus.CANCELLED)

        with pytest.raises(InvalidStateError):
            await PaymentLedger(repo).apply_payment(customer.id, Decimal("10"), PaymentMethod.EFECTIVO, sale_id=sale.id)

    async def test_other_tenant_customer_is_not_found(self, other_repo, make_customer):
        customer = await make_customer(current_debt="100")

        with pytest.raises(NotFoundError):
            await PaymentLedger(other_repo).apply_payment(customer.id, Decimal("10"), PaymentMethod.EFECTIVO)


# ===== ABONOS GENERALES Y DISTRIBUIDOS =====

class TestGeneralPayments:

    async def test_general_payment_only_reduces_debt(self, repo, db_session, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer)

        result = await PaymentLedger(repo).apply_payment(customer.id, Decimal("250"), PaymentMethod.EFECTIVO)

        assert result.sale is None
        assert result.payments[0].sale_id is None
        assert result.unallocated_amount == Decimal("250.00")
        assert result.customer.current_debt == Decimal("750.00")
        await db_session.refresh(sale)
        assert sale.remaining_balance == Decimal("1000.00")

    async def test_debt_never_goes_negative(self, repo, make_customer):
        customer = await make_customer(current_debt="100")

        result = await PaymentLedger(repo).apply_payment(customer.id, Decimal("150"), PaymentMethod.EFECTIVO)

        assert result.customer.current_debt == Decimal("0.00")
        assert result.payments[0].debt_applied == Decimal("100.00")

    async def test_distribute_oldest_first_with_surplus(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="700")
        now = datetime.now(timezone.utc)
        oldest = await make_credit_sale(customer, total="300.00", created_at=now - timedelta(days=20))
        newest = await make_credit_sale(customer, total="400.00", created_at=now - timedelta(days=2))

        result = await PaymentLedger(repo).apply_payment(
            customer.id, Decimal("800"), PaymentMethod.TRANSFERENCIA, distribute=True
        )

        by_id = {s.id: s for s in result.affected_sales}
        assert [s.id for s in result.affected_sales] == [oldest.id, newest.id]
        assert by_id[oldest.id].payment_status == PaymentStatus.PAID
        assert by_id[newest.id].payment_status == PaymentStatus.PAID
        assert result.unallocated_amount == Decimal("100.00")
        assert len(result.payments) == 3
        assert result.customer.current_debt == Decimal("0.00")

    async def test_distribute_partial_allocation(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="700")
        now = datetime.now(timezone.utc)
        oldest = await make_credit_sale(customer, total="300.00", created_at=now - timedelta(days=20))
        newest = await make_credit_sale(customer, total="400.00", created_at=now - timedelta(days=2))

        result = await PaymentLedger(repo).apply_payment(
            customer.id, Decimal("350"), PaymentMethod.EFECTIVO, distribute=True
        )

        by_id = {s.id: s for s in result.affected_sales}
        assert by_id[oldest.id].remaining_balance == Decimal("0.00")
        assert by_id[newest.id].remaining_balance == Decimal("350.00")
        assert by_id[newest.id].payment_status == PaymentStatus.PARTIAL
        assert result.unallocated_amount == Decimal("0.00")

    async def test_sale_and_distribute_are_exclusive(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer)

        with pytest.raises(ValidationError):
            await PaymentLedger(repo).apply_payment(
                customer.id, Decimal("10"), PaymentMethod.EFECTIVO, sale_id=sale.id, distribute=True
            )


# ===== VENCIMIENTOS Y RECÁLCULO =====

class TestOverdueAndRecompute:

    async def test_mark_overdue_sales(self, repo, db_session, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="2000")
        late = await make_credit_sale(customer, due_date=date.today() - timedelta(days=3))
        on_time = await make_credit_sale(customer, due_date=date.today() + timedelta(days=3))

        updated = await PaymentLedger(repo).mark_overdue_sales()

        assert updated == 1
        await db_session.refresh(late)
        await db_session.refresh(on_time)
        assert late.payment_status == PaymentStatus.OVERDUE
        assert on_time.payment_status == PaymentStatus.PENDING

    async def test_payment_on_overdue_sale(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer, due_date=date.today() - timedelta(days=3))
        ledger = PaymentLedger(repo)
        await ledger.mark_overdue_sales()

        result = await ledger.apply_payment(customer.id, Decimal("100"), PaymentMethod.EFECTIVO, sale_id=sale.id)

        assert result.sale.payment_status == PaymentStatus.PARTIAL
        assert result.sale.remaining_balance == Decimal("900.00")

    async def test_recompute_customer_debt(self, repo, make_customer, make_credit_sale):
        # Deuda almacenada desfasada
        customer = await make_customer(current_debt="50")
        await make_credit_sale(customer, total="1000.00", amount_paid="200")
        await make_credit_sale(customer, total="500.00", status=SaleStatus.CANCELLED)
        repo.add(CustomerPayment(
            customer_id=customer.id, amount=Decimal("100"), debt_applied=Decimal("100"),
            payment_method=PaymentMethod.EFECTIVO, payment_date=datetime.now(timezone.utc)
        ))
        await repo.commit()

        balance = await PaymentLedger(repo).recompute_customer_debt(customer.id)

        assert balance.current_debt == Decimal("700.00")

    async def test_recompute_ignores_general_payment_made_without_debt(self, repo, make_customer, credit_sale_of):
        customer = await make_customer(credit_limit="5000")
        ledger = PaymentLedger(repo)

        result = await ledger.apply_payment(customer.id, Decimal("100"), PaymentMethod.EFECTIVO)
        assert result.customer.current_debt == Decimal("0.00")
        assert result.payments[0].debt_applied == Decimal("0.00")

        sale = await credit_sale_of(customer, quantity=5)
        assert sale.remaining_balance == Decimal("580.00")

        balance = await ledger.recompute_customer_debt(customer.id)

        assert balance.current_debt == Decimal("580.00")

    async def test_recompute_after_payment_absorbed_by_zero_floor(self, repo, make_customer, credit_sale_of):
        customer = await make_customer(credit_limit="5000")
        ledger = PaymentLedger(repo)
        first = await credit_sale_of(customer, quantity=1)

        # El abono general deja la deuda en cero; el abono a la venta ya no descuenta nada
        await ledger.apply_payment(customer.id, Decimal("116"), PaymentMethod.EFECTIVO)
        result = await ledger.apply_payment(customer.id, Decimal("116"), PaymentMethod.EFECTIVO, sale_id=first.id)
        assert result.sale.payment_status == PaymentStatus.PAID
        assert result.payments[0].debt_applied == Decimal("0.00")
        assert result.customer.current_debt == Decimal("0.00")

        await credit_sale_of(customer, quantity=5)
        balance = await ledger.recompute_customer_debt(customer.id)

        assert balance.current_debt == Decimal("580.00")

    async def test_recompute_after_cancelling_covered_sale(self, repo, make_customer, credit_sale_of):
        customer = await make_customer(credit_limit="5000")
        ledger = PaymentLedger(repo)
        sale = await credit_sale_of(customer, quantity=1)
        await ledger.apply_payment(customer.id, Decimal("116"), PaymentMethod.EFECTIVO)

        cancellation = await CancellationService(repo).cancel(sale.id, CancellationType.FULL, "Devolución")
        assert cancellation.released_balance == Decimal("116.00")
        assert cancellation.debt_released == Decimal("0.00")

        balance = await ledger.recompute_customer_debt(customer.id)

        assert balance.current_debt == Decimal("0.00")

    async def test_payment_locks_customer_before_sale(self, repo, monkeypatch, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer)
        locked = []
        original_get = repo.get

        async def recording_get(model, obj_id, **kwargs):
            if kwargs.get("for_update"):
                locked.append(model.__name__)
            return await original_get(model, obj_id, **kwargs)

        monkeypatch.setattr(repo, "get", recording_get)
        await PaymentLedger(repo).apply_payment(customer.id, Decimal("100"), PaymentMethod.EFECTIVO, sale_id=sale.id)

        assert locked == ["Customer", "Sale"]

    async def test_recompute_unknown_customer(self, repo):
        with pytest.raises(NotFoundError):
            await PaymentLedger(repo).recompute_customer_debt(uuid4())


# ===== PASARELA =====

class TestMockGateway:

    async def test_approves_card(self):
        result = await MockPaymentGateway().charge(Decimal("100"), card(), "ON-2501-0001")

        assert result.success is True
        assert result.transaction_id.startswith("MOCK-")

    async def test_declines_configured_card(self):
        result = await MockPaymentGateway().charge(Decimal("100"), card("4000000000000002"), "ON-2501-0001")

        assert result.success is False
        assert result.error

    async def test_disabled_gateway_declines(self):
        result = await DisabledPaymentGateway().charge(Decimal("100"), card(), "ON-2501-0001")
        assert result.success is False


# ===== TESTS DE API =====

class TestPaymentsAPI:
    """Tests de endpoints /customer-payments"""

    async def test_create_payment(self, client, auth_headers, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer)

        response = await client.post("/customer-payments", headers=auth_headers, json={
            "customer_id": str(customer.id), "sale_id": str(sale.id),
            "amount": "400.00", "payment_method": "EFECTIVO"
        })

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["sale"]["remaining_balance"]) == Decimal("600.00")
        assert Decimal(data["customer"]["current_debt"]) == Decimal("600.00")

    async def test_amount_exceeds_balance_response(self, client, auth_headers, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer)

        response = await client.post("/customer-payments", headers=auth_headers, json={
            "customer_id": str(customer.id), "sale_id": str(sale.id),
            "amount": "1000.01", "payment_method": "EFECTIVO"
        })

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "AMOUNT_EXCEEDS_BALANCE"

    async def test_zero_amount_rejected_by_schema(self, client, auth_headers, make_customer):
        customer = await make_customer()

        response = await client.post("/customer-payments", headers=auth_headers, json={
            "customer_id": str(customer.id), "amount": "0", "payment_method": "EFECTIVO"
        })

        assert response.status_code == 422

    async def test_mark_overdue_endpoint(self, client, auth_headers, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        await make_credit_sale(customer, due_date=date.today() - timedelta(days=1))

        response = await client.post("/customer-payments/mark-overdue", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"updated": 1}
