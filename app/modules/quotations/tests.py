"""
Tests para el módulo de Cotizaciones
"""

import re
import pytest
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import InvalidStateError, NotFoundError
from app.modules.quotations.models import QuotationStatus
from app.modules.quotations.schemas import QuotationCreate, QuotationItemCreate
from app.modules.quotations.service import QuotationService


class TestCreateQuotation:

    async def test_totals_and_number(self, repo, make_product, make_customer):
        product = await make_product(name="Lámpara", price="100.00")
        customer = await make_customer()

        quotation = await QuotationService(repo).create_quotation(QuotationCreate(
            customer_id=customer.id,
            items=[QuotationItemCreate(product_id=product.id, quantity=2, discount=Decimal("20"))]
        ))

        assert re.match(r"^COT-\d{4}-0001$", quotation.quotation_number)
        assert quotation.status == QuotationStatus.DRAFT
        assert quotation.subtotal == Decimal("180.00")
        assert quotation.tax == Decimal("28.80")
        assert quotation.total == Decimal("208.80")
        assert quotation.items[0].description == "Lámpara"
        assert quotation.items[0].unit_price == Decimal("100.00")
        assert quotation.valid_until > quotation.created_at

    async def test_explicit_unit_price(self, repo, make_product, make_customer):
        product = await make_product(price="100.00")
        customer = await make_customer()

        quotation = await QuotationService(repo).create_quotation(QuotationCreate(
            customer_id=customer.id,
            items=[QuotationItemCreate(product_id=product.id, quantity=1, unit_price=Decimal("80.50"))]
        ))

        assert quotation.subtotal == Decimal("80.50")
        assert quotation.tax == Decimal("12.88")

    async def test_numbers_increment(self, repo, make_product, make_customer):
        product = await make_product()
        customer = await make_customer()
        service = QuotationService(repo)
        data = QuotationCreate(customer_id=customer.id, items=[QuotationItemCreate(product_id=product.id, quantity=1)])

        first = await service.create_quotation(data)
        second = await service.create_quotation(data)

        assert first.quotation_number.endswith("-0001")
        assert second.quotation_number.endswith("-0002")

    async def test_unknown_product(self, repo, make_customer):
        customer = await make_customer()

        with pytest.raises(NotFoundError):
            await QuotationService(repo).create_quotation(QuotationCreate(
                customer_id=customer.id,
                items=[QuotationItemCreate(product_id=uuid4(), quantity=1)]
            ))

    async def test_other_tenant_customer(self, other_repo, make_product, make_customer):
        customer = await make_customer()
        product = await make_product(target_repo=other_repo)

        with pytest.raises(NotFoundError):
            await QuotationService(other_repo).create_quotation(QuotationCreate(
                customer_id=customer.id,
                items=[QuotationItemCreate(product_id=product.id, quantity=1)]
            ))


class TestQuotationStatus:

    async def _quotation(self, repo, make_product, make_customer):
        product = await make_product()
        customer = await make_customer()
        return await QuotationService(repo).create_quotation(QuotationCreate(
            customer_id=customer.id, items=[QuotationItemCreate(product_id=product.id, quantity=1)]
        ))

    async def test_draft_to_sent_to_cancelled(self, repo, make_product, make_customer):
        quotation = await self._quotation(repo, make_product, make_customer)
        service = QuotationService(repo)

        sent = await service.change_status(quotation.id, QuotationStatus.SENT)
        cancelled = await service.change_status(quotation.id, QuotationStatus.CANCELLED)

        assert sent.status == QuotationStatus.SENT
        assert cancelled.status == QuotationStatus.CANCELLED

    async def test_converted_cannot_be_set_manually(self, repo, make_product, make_customer):
        quotation = await self._quotation(repo, make_product, make_customer)

        with pytest.raises(InvalidStateError):
            await QuotationService(repo).change_status(quotation.id, QuotationStatus.CONVERTED)

    async def test_cancelled_is_terminal(self, repo, make_product, make_customer):
        quotation = await self._quotation(repo, make_product, make_customer)
        service = QuotationService(repo)
        await service.change_status(quotation.id, QuotationStatus.CANCELLED)

        with pytest.raises(InvalidStateError):
            await service.change_status(quotation.id, QuotationStatus.SENT)


class TestQuotationsAPI:

    async def test_create_and_get(self, client, auth_headers, make_product, make_customer):
        product = await make_product(price="50.00")
        customer = await make_customer()

        response = await client.post("/quotations", headers=auth_headers, json={
            "customer_id": str(customer.id),
            "items": [{"product_id": str(product.id), "quantity": 3}]
        })
        assert response.status_code == 201
        quotation = response.json()
        assert Decimal(quotation["total"]) == Decimal("174.00")

        response = await client.get(f"/quotations/{quotation['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert len(response.json()["items"]) == 1

    async def test_empty_items_rejected(self, client, auth_headers, make_customer):
        customer = await make_customer()

        response = await client.post("/quotations", headers=auth_headers, json={
            "customer_id": str(customer.id), "items": []
        })
        assert response.status_code == 422

    async def test_patch_status(self, client, auth_headers, make_product, make_customer):
        product = await make_product()
        customer = await make_customer()
        quotation = (await client.post("/quotations", headers=auth_headers, json={
            "customer_id": str(customer.id),
            "items": [{"product_id": str(product.id), "quantity": 1}]
        })).json()

        response = await client.patch(f"/quotations/{quotation['id']}/status", headers=auth_headers,
                                      json={"status": "SENT"})
        assert response.status_code == 200
        assert response.json()["status"] == "SENT"
