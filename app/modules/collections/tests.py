"""
Tests para el módulo de Cobranza

Cubren:
- Buckets de antigüedad y detección de vencidas
- Uso de crédito y alertas
- Estado de cuenta y resumen de cobranza
- Endpoints /collections y /customers
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from app.common.exceptions import ValidationError
from app.modules.collections.schemas import AlertSeverity, AlertType
from app.modules.collections.service import (
    CollectionsService, aging_bucket_for, credit_utilization, is_overdue
)
from app.modules.customers.models import Customer
from app.modules.payments.service import PaymentLedger
from app.modules.sales.models import PaymentMethod, Sale, SaleStatus
from conftest import make_token


def utc_today():
    return datetime.now(timezone.utc).date()


def days_ago(days):
    return datetime.now(timezone.utc) - timedelta(days=days)


# ===== FUNCIONES PURAS =====

class TestAgingHelpers:

    @pytest.mark.parametrize("days,bucket", [
        (0, "current"), (30, "current"),
        (31, "days_30"), (60, "days_30"),
        (61, "days_60"), (90, "days_60"),
        (91, "days_90_plus"), (400, "days_90_plus"),
    ])
    def test_bucket_boundaries(self, days, bucket):
        assert aging_bucket_for(days) == bucket

    def test_is_overdue(self):
        now = datetime(2025, 6, 10, 12, 0, tzinfo=timezone.utc)
        late = Sale(due_date=date(2025, 6, 9), status=SaleStatus.COMPLETED, remaining_balance=Decimal("10"))
        due_today = Sale(due_date=date(2025, 6, 10), status=SaleStatus.COMPLETED, remaining_balance=Decimal("10"))
        paid = Sale(due_date=date(2025, 6, 1), status=SaleStatus.COMPLETED, remaining_balance=Decimal("0"))
        cancelled = Sale(due_date=date(2025, 6, 1), status=SaleStatus.CANCELLED, remaining_balance=Decimal("10"))
        no_due = Sale(due_date=None, status=SaleStatus.COMPLETED, remaining_balance=Decimal("10"))

        assert is_overdue(late, now) is True
        assert is_overdue(due_today, now) is False
        assert is_overdue(paid, now) is False
        assert is_overdue(cancelled, now) is False
        assert is_overdue(no_due, now) is False

    def test_credit_utilization(self):
        assert credit_utilization(Customer(credit_limit=Decimal("1000"), current_debt=Decimal("250"))) == Decimal("25.00")
        assert credit_utilization(Customer(credit_limit=Decimal("0"), current_debt=Decimal("250"))) is None


# ===== REPORTE DE ANTIGÜEDAD =====

class TestAgingReport:

    async def test_buckets_totals_and_overdue(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(name="Sin límite", credit_limit="0", current_debt="1000")
        await make_credit_sale(customer, total="100.00", created_at=days_ago(10))
        await make_credit_sale(customer, total="200.00", created_at=days_ago(45))
        await make_credit_sale(customer, total="300.00", created_at=days_ago(75),
                               due_date=utc_today() - timedelta(days=45))
        await make_credit_sale(customer, total="400.00", created_at=days_ago(120), amount_paid="150")
        await make_credit_sale(customer, total="999.00", created_at=days_ago(5), status=SaleStatus.CANCELLED)

        report = await CollectionsService(repo).aging_report()

        assert report.buckets.current.count == 1
        assert report.buckets.current.amount == Decimal("100.00")
        assert report.buckets.days_30.amount == Decimal("200.00")
        assert report.buckets.days_60.amount == Decimal("300.00")
        assert report.buckets.days_90_plus.amount == Decimal("250.00")
        assert report.total_outstanding == Decimal("850.00")
        assert report.open_sales == 4

        assert len(report.overdue) == 1
        assert report.overdue[0].days_overdue == 45
        assert report.overdue[0].customer_name == "Sin límite"

        assert len(report.top_debtors) == 1
        assert report.top_debtors[0].usage_percent is None

    async def test_top_debtors_ordered_by_debt(self, repo, make_customer):
        await make_customer(name="Menor", credit_limit="1000", current_debt="100")
        await make_customer(name="Mayor", credit_limit="1000", current_debt="900")
        await make_customer(name="Sin deuda", credit_limit="1000", current_debt="0")

        report = await CollectionsService(repo).aging_report()

        assert [d.customer_name for d in report.top_debtors] == ["Mayor", "Menor"]
        assert report.top_debtors[0].usage_percent == Decimal("90.00")

    async def test_report_is_tenant_scoped(self, other_repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        await make_credit_sale(customer)

        report = await CollectionsService(other_repo).aging_report()

        assert report.open_sales == 0
        assert report.total_outstanding == Decimal("0.00")


# ===== ALERTAS =====

class TestCreditAlerts:

    async def test_alert_types(self, repo, make_customer, make_credit_sale):
        no_limit = await make_customer(name="Sin límite", credit_limit="0", current_debt="3000")
        await make_credit_sale(no_limit, due_date=utc_today() - timedelta(days=5))
        await make_credit_sale(no_limit, due_date=utc_today() + timedelta(days=3))
        await make_credit_sale(no_limit, due_date=utc_today() + timedelta(days=30))
        await make_customer(name="Cerca", credit_limit="1000", current_debt="950")
        await make_customer(name="Excedido", credit_limit="1000", current_debt="1200")

        result = await CollectionsService(repo).credit_alerts()

        by_type = {alert.type: alert for alert in result.alerts}
        assert result.total == 4
        assert result.high == 2
        assert result.medium == 2
        assert by_type[AlertType.OVERDUE].days == 5
        assert by_type[AlertType.DUE_SOON].days == 3
        assert by_type[AlertType.CREDIT_LIMIT_WARNING].customer_name == "Cerca"
        assert by_type[AlertType.CREDIT_LIMIT_WARNING].usage_percent == Decimal("95.00")
        assert by_type[AlertType.CREDIT_LIMIT_EXCEEDED].customer_name == "Excedido"
        assert result.alerts[0].severity == AlertSeverity.HIGH
        assert all(alert.customer_name != "Sin límite" for alert in result.alerts
                   if alert.type in (AlertType.CREDIT_LIMIT_WARNING, AlertType.CREDIT_LIMIT_EXCEEDED))


# ===== ESTADO DE CUENTA =====

class TestAccountStatement:

    async def test_statement_summary(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(credit_limit="5000", current_debt="1500")
        late = await make_credit_sale(customer, total="1000.00", created_at=days_ago(40),
                                      due_date=utc_today() - timedelta(days=2))
        await make_credit_sale(customer, total="500.00", created_at=days_ago(5),
                               due_date=utc_today() + timedelta(days=2))
        await PaymentLedger(repo).apply_payment(customer.id, Decimal("200"), PaymentMethod.EFECTIVO, sale_id=late.id)

        statement = await CollectionsService(repo).account_statement(customer.id)

        assert statement.customer.current_debt == Decimal("1300.00")
        assert statement.summary.available_credit == Decimal("3700.00")
        assert statement.summary.usage_percent == Decimal("26.00")
        assert statement.summary.open_sales == 2
        assert statement.summary.overdue_sales == 1
        assert statement.summary.due_soon_sales == 1
        assert statement.pending_sales[0].is_overdue is True
        assert statement.pending_sales[0].remaining_balance == Decimal("800.00")
        assert len(statement.recent_payments) == 1


# ===== RESUMEN DE COBRANZA =====

class TestCollectionsSummary:

    async def test_summary_by_method(self, repo, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        sale = await make_credit_sale(customer, total="1000.00")
        ledger = PaymentLedger(repo)
        await ledger.apply_payment(customer.id, Decimal("200"), PaymentMethod.EFECTIVO, sale_id=sale.id)
        await ledger.apply_payment(customer.id, Decimal("300"), PaymentMethod.TRANSFERENCIA, sale_id=sale.id)

        today = datetime.now(timezone.utc).date()
        summary = await CollectionsService(repo).collections_summary(today - timedelta(days=1), today)

        methods = {item.payment_method: item for item in summary.by_method}
        assert summary.total_collected == Decimal("500.00")
        assert summary.payments_count == 2
        assert methods[PaymentMethod.EFECTIVO].amount == Decimal("200.00")
        assert summary.credit_sales_total == Decimal("1000.00")
        assert summary.collection_rate == Decimal("50.00")

    async def test_end_before_start(self, repo):
        with pytest.raises(ValidationError) as exc_info:
            await CollectionsService(repo).collections_summary(date(2025, 2, 1), date(2025, 1, 1))
        assert exc_info.value.status_code == 422
        assert exc_info.value.detail["code"] == "VALIDATION_ERROR"


# ===== TESTS DE API =====

class TestCollectionsAPI:

    async def test_aging_endpoint(self, client, auth_headers, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="1000")
        await make_credit_sale(customer)

        response = await client.get("/collections/aging", headers=auth_headers)

        assert response.status_code == 200
        assert Decimal(response.json()["total_outstanding"]) == Decimal("1000.00")

    async def test_seller_cannot_read_collections(self, client, seller_headers):
        response = await client.get("/collections/alerts", headers=seller_headers)
        assert response.status_code == 403

    async def test_summary_endpoint_validates_dates(self, client, auth_headers):
        response = await client.get(
            "/collections/summary", headers=auth_headers,
            params={"start_date": "2025-02-01", "end_date": "2025-01-01"}
        )
        assert response.status_code == 422

    async def test_account_statement_other_tenant(self, client, other_tenant_context, make_customer):
        customer = await make_customer()
        headers = {"Authorization": f"Bearer {make_token(other_tenant_context)}"}

        response = await client.get(f"/customers/{customer.id}/account-statement", headers=headers)
        assert response.status_code == 404

    async def test_recompute_debt_endpoint(self, client, auth_headers, make_customer, make_credit_sale):
        customer = await make_customer(current_debt="0")
        await make_credit_sale(customer, total="750.00")

        response = await client.post(f"/customers/{customer.id}/recompute-debt", headers=auth_headers)

        assert response.status_code == 200
        assert Decimal(response.json()["current_debt"]) == Decimal("750.00")
