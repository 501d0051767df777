"""
Tests para la generación de folios
"""

import re
import pytest
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from app.common.exceptions import AlreadyConvertedError, FolioConflictError, InternalError
from app.modules.folios.service import (
    FolioSequencer, FolioSeries, format_folio, parse_folio_number, translate_integrity_error
)


class TestFolioFormat:
    """Formato y parseo de folios"""

    def test_sale_folio_format(self):
        assert format_folio(FolioSeries.SALE, 1) == "VTA-000001"
        assert format_folio(FolioSeries.SALE, 123456) == "VTA-123456"

    def test_dated_series_include_year_month(self):
        today = date(2025, 3, 14)
        assert format_folio(FolioSeries.QUOTATION, 7, today) == "COT-2503-0007"
        assert format_folio(FolioSeries.ONLINE_ORDER, 12, today) == "ON-2503-0012"

    def test_parse_trailing_number(self):
        assert parse_folio_number("VTA-000042") == 42
        assert parse_folio_number("COT-2503-0007") == 7
        assert parse_folio_number(None) == 0
        assert parse_folio_number("SIN-NUMERO-") == 0


class TestNextFolio:
    """Secuencia por tenant"""

    async def test_first_folio_starts_at_one(self, repo):
        folio = await FolioSequencer(repo).next_folio(FolioSeries.SALE)
        assert folio == "VTA-000001"

    async def test_next_folio_increments_latest(self, repo, make_customer, make_credit_sale):
        customer = await make_customer()
        await make_credit_sale(customer, folio="VTA-000009")

        folio = await FolioSequencer(repo).next_folio(FolioSeries.SALE)
        assert folio == "VTA-000010"

    async def test_latest_document_wins_over_higher_number(self, repo, make_customer, make_credit_sale):
        customer = await make_customer()
        old = datetime.now(timezone.utc) - timedelta(days=10)
        await make_credit_sale(customer, folio="VTA-000050", created_at=old)
        await make_credit_sale(customer, folio="VTA-000003")

        folio = await FolioSequencer(repo).next_folio(FolioSeries.SALE)
        assert folio == "VTA-000004"

    async def test_sequences_are_per_tenant(self, repo, other_repo, make_customer, make_credit_sale):
        customer = await make_customer()
        await make_credit_sale(customer, folio="VTA-000020")

        assert await FolioSequencer(other_repo).next_folio(FolioSeries.SALE) == "VTA-000001"

    async def test_quotation_series_format(self, repo):
        folio = await FolioSequencer(repo).next_folio(FolioSeries.QUOTATION)
        assert re.match(r"^COT-\d{4}-0001$", folio)


def integrity_error(message):
    return IntegrityError("INSERT INTO sales ...", {}, Exception(message))


class TestTranslateIntegrityError:
    """Violaciones de integridad al guardar documentos"""

    @pytest.mark.parametrize("message", [
        "UNIQUE constraint failed: sales.tenant_id, sales.source_type, sales.source_id",
        'duplicate key value violates unique constraint "uq_sale_tenant_source"',
    ])
    def test_source_constraint_is_already_converted(self, message):
        assert isinstance(translate_integrity_error(integrity_error(message), "VTA-000002"), AlreadyConvertedError)

    @pytest.mark.parametrize("message", [
        "UNIQUE constraint failed: sales.tenant_id, sales.folio",
        'duplicate key value violates unique constraint "uq_sale_tenant_folio"',
        "UNIQUE constraint failed: quotations.tenant_id, quotations.quotation_number",
        'duplicate key value violates unique constraint "uq_online_order_tenant_number"',
    ])
    def test_number_collision_is_retryable(self, message):
        error = translate_integrity_error(integrity_error(message), "VTA-000002")

        assert isinstance(error, FolioConflictError)
        assert error.detail["retryable"] is True
        assert error.detail["folio"] == "VTA-000002"

    @pytest.mark.parametrize("message", [
        "FOREIGN KEY constraint failed",
        'insert or update on table "sales" violates foreign key constraint "sales_customer_id_fkey"',
        "NOT NULL constraint failed: sales.folio",
    ])
    def test_other_violations_are_internal(self, message):
        error = translate_integrity_error(integrity_error(message), "VTA-000002")

        assert isinstance(error, InternalError)
        assert error.status_code == 500
