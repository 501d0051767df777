"""
Tests para pedidos en línea

Cubren:
- Registro del pedido con precios del catálogo
- Conversión a venta con resolución de cliente por correo/teléfono
- Cobro con tarjeta (aprobado / rechazado)
"""

import re
import pytest
from decimal import Decimal

from app.common.exceptions import (
    AlreadyConvertedError, InvalidStateError, NotFoundError, PaymentDeclinedError,
    UnsupportedTypeError, ValidationError
)
from app.modules.customers.models import Customer
from app.modules.inventory.service import StockLedger
from app.modules.online_orders.models import (
    OnlineOrder, OrderPaymentMethod, OrderPaymentStatus, OrderStatus, OrderType
)
from app.modules.online_orders.schemas import OnlineOrderCreate, OnlineOrderItemCreate
from app.modules.online_orders.service import OnlineOrderService
from app.modules.payments.gateway import MockPaymentGateway
from app.modules.payments.schemas import CardData
from app.modules.sales.fulfillment import FulfillmentService
from app.modules.sales.models import Sale, PaymentMethod, PaymentStatus, SourceType
from app.modules.sales.schemas import PaymentDecision

APPROVED_CARD = CardData(number="4242424242424242", holder_name="Ana López", exp_month=12, exp_year=2030, cvv="123")
DECLINED_CARD = CardData(number="4000000000000002", holder_name="Ana López", exp_month=12, exp_year=2030, cvv="123")


@pytest.fixture
def make_order(repo):
    async def _make(products, payment_method=OrderPaymentMethod.CASH_ON_DELIVERY, order_type=OrderType.SALE,
                    email="ana@example.com", phone="5512345678", name="Ana López"):
        return await OnlineOrderService(repo).create_order(OnlineOrderCreate(
            type=order_type,
            customer_name=name,
            customer_email=email,
            customer_phone=phone,
            payment_method=payment_method,
            items=[OnlineOrderItemCreate(product_id=p.id, quantity=q) for p, q in products]
        ))
    return _make


class TestCreateOrder:

    async def test_order_uses_catalog_prices(self, make_product, make_order):
        product = await make_product(name="Mochila", price="250.00")

        order = await make_order([(product, 2)])

        assert re.match(r"^ON-\d{4}-0001$", order.order_number)
        assert order.status == OrderStatus.PENDING
        assert order.subtotal == Decimal("500.00")
        assert order.tax == Decimal("80.00")
        assert order.total == Decimal("580.00")
        assert order.items[0]["product_name"] == "Mochila"
        assert order.items[0]["price"] == "250.00"

    async def test_inactive_product_rejected(self, make_product, make_order):
        product = await make_product(is_active=False)

        with pytest.raises(NotFoundError):
            await make_order([(product, 1)])


class TestOrderConversion:

    async def test_cash_order_creates_customer(self, repo, db_session, make_product, make_order):
        product = await make_product(price="100.00", stock=5)
        order = await make_order([(product, 2)], email="Nuevo@Example.com")

        sale = await FulfillmentService(repo).convert_to_sale(order.id, SourceType.ONLINE_ORDER)

        assert sale.payment_method == PaymentMethod.EFECTIVO
        assert sale.payment_status == PaymentStatus.PAID
        assert sale.source_type == SourceType.ONLINE_ORDER

        customer = await repo.get(Customer, sale.customer_id)
        assert customer.email == "nuevo@example.com"
        assert customer.credit_limit == Decimal("0.00")

        stored = await repo.get(OnlineOrder, order.id)
        await db_session.refresh(stored)
        assert stored.status == OrderStatus.COMPLETED
        assert stored.sale_id == sale.id
        assert stored.customer_id == customer.id
        assert stored.payment_status == OrderPaymentStatus.PAID

        movements = await StockLedger(repo).list_movements(sale_id=sale.id)
        assert movements.movements[0].reason == f"Venta {sale.folio} - Pedido en línea {order.order_number}"

    async def test_existing_customer_matched_by_email_and_phone(self, repo, make_product, make_customer, make_order):
        product = await make_product(stock=5)
        existing = await make_customer(name="Ana", email="ana@example.com", phone="5512345678")
        await make_customer(name="Homónimo", email="ana@example.com", phone="5599999999")
        order = await make_order([(product, 1)], name="Ana López")

        sale = await FulfillmentService(repo).convert_to_sale(order.id, SourceType.ONLINE_ORDER)

        assert sale.customer_id == existing.id
        assert len(await repo.all(repo.select(Customer))) == 2

    async def test_credit_conversion_of_online_order(self, repo, db_session, make_product, make_customer, make_order):
        product = await make_product(price="100.00", stock=5)
        customer = await make_customer(email="ana@example.com", phone="5512345678", payment_terms_days=15)
        order = await make_order([(product, 1)])

        sale = await FulfillmentService(repo).convert_to_sale(
            order.id, SourceType.ONLINE_ORDER, PaymentDecision(payment_method=PaymentMethod.CREDITO)
        )

        assert sale.payment_status == PaymentStatus.PENDING
        assert (sale.due_date - sale.created_at.date()).days == 15
        await db_session.refresh(customer)
        assert customer.current_debt == Decimal("116.00")

    async def test_quote_request_is_unsupported(self, repo, make_product, make_order):
        product = await make_product(stock=5)
        order = await make_order([(product, 1)], order_type=OrderType.QUOTE)

        with pytest.raises(UnsupportedTypeError):
            await FulfillmentService(repo).convert_to_sale(order.id, SourceType.ONLINE_ORDER)

    async def test_unpaid_card_order_cannot_convert(self, repo, make_product, make_order):
        product = await make_product(stock=5)
        order = await make_order([(product, 1)], payment_method=OrderPaymentMethod.CARD)

        with pytest.raises(InvalidStateError):
            await FulfillmentService(repo).convert_to_sale(order.id, SourceType.ONLINE_ORDER)

    async def test_completed_order_is_already_converted(self, repo, make_product, make_order):
        product = await make_product(stock=5)
        order = await make_order([(product, 1)])
        service = FulfillmentService(repo)
        await service.convert_to_sale(order.id, SourceType.ONLINE_ORDER)

        with pytest.raises(AlreadyConvertedError):
            await service.convert_to_sale(order.id, SourceType.ONLINE_ORDER)


class TestCardPayment:

    async def test_approved_card_creates_paid_sale(self, repo, db_session, make_product, make_order):
        product = await make_product(price="100.00", stock=5)
        order = await make_order([(product, 1)], payment_method=OrderPaymentMethod.CARD)

        sale = await FulfillmentService(repo).process_card_payment(order.id, APPROVED_CARD, MockPaymentGateway())

        assert sale.payment_method == PaymentMethod.TARJETA
        assert sale.payment_status == PaymentStatus.PAID
        stored = await repo.get(OnlineOrder, order.id)
        await db_session.refresh(stored)
        assert stored.payment_status == OrderPaymentStatus.PAID
        assert stored.payment_reference.startswith("MOCK-")
        assert stored.status == OrderStatus.COMPLETED

    async def test_declined_card_fails_order(self, repo, db_session, make_product, make_order):
        product = await make_product(stock=5)
        order = await make_order([(product, 1)], payment_method=OrderPaymentMethod.CARD)
        service = FulfillmentService(repo)

        with pytest.raises(PaymentDeclinedError):
            await service.process_card_payment(order.id, DECLINED_CARD, MockPaymentGateway())

        stored = await repo.get(OnlineOrder, order.id)
        await db_session.refresh(stored)
        assert stored.status == OrderStatus.FAILED
        assert stored.payment_status == OrderPaymentStatus.FAILED
        assert stored.payment_error
        assert await repo.all(repo.select(Sale)) == []
        await db_session.refresh(product)
        assert product.stock == 5

        # FAILED es terminal
        with pytest.raises(InvalidStateError):
            await service.process_card_payment(order.id, APPROVED_CARD, MockPaymentGateway())

    async def test_cash_order_cannot_be_charged(self, repo, make_product, make_order):
        product = await make_product(stock=5)
        order = await make_order([(product, 1)])

        with pytest.raises(ValidationError):
            await FulfillmentService(repo).process_card_payment(order.id, APPROVED_CARD, MockPaymentGateway())

    async def test_paid_card_order_only_converts_as_tarjeta(self, repo, db_session, make_product, make_order):
        product = await make_product(stock=5)
        order = await make_order([(product, 1)], payment_method=OrderPaymentMethod.CARD)
        stored = await repo.get(OnlineOrder, order.id)
        stored.payment_status = OrderPaymentStatus.PAID
        await repo.commit()

        with pytest.raises(ValidationError):
            await FulfillmentService(repo).convert_to_sale(
                order.id, SourceType.ONLINE_ORDER, PaymentDecision(payment_method=PaymentMethod.EFECTIVO)
            )


class TestOnlineOrdersAPI:

    async def test_create_and_pay(self, client, auth_headers, make_product):
        product = await make_product(price="100.00", stock=2)

        response = await client.post("/online-orders", headers=auth_headers, json={
            "customer_name": "Luis", "customer_email": "luis@example.com",
            "payment_method": "CARD",
            "items": [{"product_id": str(product.id), "quantity": 1}]
        })
        assert response.status_code == 201
        order = response.json()

        response = await client.post(f"/online-orders/{order['id']}/pay", headers=auth_headers, json={
            "card": {"number": "4242424242424242", "holder_name": "Luis", "exp_month": 1, "exp_year": 2030, "cvv": "321"}
        })
        assert response.status_code == 200
        assert response.json()["payment_method"] == "TARJETA"

    async def test_declined_payment_returns_402(self, client, auth_headers, make_product):
        product = await make_product(stock=2)
        order = (await client.post("/online-orders", headers=auth_headers, json={
            "customer_name": "Luis", "customer_email": "luis@example.com",
            "payment_method": "CARD",
            "items": [{"product_id": str(product.id), "quantity": 1}]
        })).json()

        response = await client.post(f"/online-orders/{order['id']}/pay", headers=auth_headers, json={
            "card": {"number": "4000000000000002", "holder_name": "Luis", "exp_month": 1, "exp_year": 2030, "cvv": "321"}
        })

        assert response.status_code == 402
        assert response.json()["detail"]["code"] == "PAYMENT_DECLINED"

        response = await client.get(f"/online-orders/{order['id']}", headers=auth_headers)
        assert response.json()["status"] == "FAILED"

    async def test_invalid_email_rejected(self, client, auth_headers, make_product):
        product = await make_product(stock=2)

        response = await client.post("/online-orders", headers=auth_headers, json={
            "customer_name": "Luis", "customer_email": "no-es-correo",
            "items": [{"product_id": str(product.id), "quantity": 1}]
        })
        assert response.status_code == 422
