"""
Collections service

Read-only views over the credit ledger: aging buckets, overdue sales,
credit utilization, alerts, account statements and collections summary.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import asc, desc, func
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.common.exceptions import ValidationError
from app.common.mixins import utcnow, as_utc
from app.common.money import ZERO, to_money
from app.common.tenancy import TenantRepository
from app.modules.customers.models import Customer
from app.modules.customers.schemas import (
    AccountStatement, AccountStatementSummary, CustomerBalanceOut,
    StatementPaymentOut, StatementSaleOut
)
from app.modules.payments.models import CustomerPayment
from app.modules.sales.models import Sale, PaymentMethod, CLOSED_SALE_STATUSES
from app.modules.collections.schemas import (
    AgingBuckets, AgingReportResponse, AlertSeverity, AlertType, CollectionsByMethod,
    CollectionsSummaryResponse, CreditAlert, CreditAlertsResponse, OverdueSale, TopDebtor
)

logger = logging.getLogger(__name__)


def aging_bucket_for(days_old: int) -> str:
    """Nombre del bucket para una antigüedad en días."""
    if days_old <= 30:
        return "current"
    elif days_old <= 60:
        return "days_30"
    elif days_old <= 90:
        return "days_60"
    else:
        return "days_90_plus"


def is_overdue(sale: Sale, now: Optional[datetime] = None) -> bool:
    if sale.due_date is None or sale.status in CLOSED_SALE_STATUSES:
        return False
    today = as_utc(now or utcnow()).date()
    return today > sale.due_date and to_money(sale.remaining_balance) > ZERO


def credit_utilization(customer: Customer) -> Optional[Decimal]:
    """Porcentaje de uso del crédito; None si el cliente no tiene límite."""
    limit = to_money(customer.credit_limit)
    if limit <= ZERO:
        return None
    return to_money(to_money(customer.current_debt) / limit * 100)


class CollectionsService:
    def __init__(self, repo: TenantRepository):
        self.repo = repo

    def _get_base_open_sales_query(self):
        """Ventas con saldo pendiente que no están canceladas"""
        return self.repo.select(Sale).where(
            Sale.remaining_balance > 0,
            Sale.status.notin_(CLOSED_SALE_STATUSES)
        )

    async def aging_report(self, now: Optional[datetime] = None) -> AgingReportResponse:
        now = as_utc(now or utcnow())
        sales = await self.repo.all(
            self._get_base_open_sales_query()
            .options(selectinload(Sale.customer))
            .order_by(asc(Sale.created_at))
        )

        buckets = AgingBuckets()
        total_outstanding = ZERO
        overdue = []

        for sale in sales:
            remaining = to_money(sale.remaining_balance)
            days_old = (now - as_utc(sale.created_at)).days
            bucket = getattr(buckets, aging_bucket_for(days_old))
            bucket.count += 1
            bucket.amount = to_money(bucket.amount + remaining)
            total_outstanding += remaining

            if is_overdue(sale, now):
                overdue.append(OverdueSale(
                    sale_id=sale.id,
                    folio=sale.folio,
                    customer_id=sale.customer_id,
                    customer_name=sale.customer.name if sale.customer else None,
                    remaining_balance=remaining,
                    due_date=sale.due_date,
                    days_overdue=(now.date() - sale.due_date).days
                ))

        overdue.sort(key=lambda item: item.days_overdue, reverse=True)

        return AgingReportResponse(
            as_of=now,
            buckets=buckets,
            total_outstanding=to_money(total_outstanding),
            open_sales=len(sales),
            top_debtors=await self._top_debtors(),
            overdue=overdue
        )

    async def credit_alerts(self, now: Optional[datetime] = None) -> CreditAlertsResponse:
        now = as_utc(now or utcnow())
        today = now.date()
        due_soon_limit = today + timedelta(days=settings.DUE_SOON_DAYS)
        alerts: List[CreditAlert] = []

        sales = await self.repo.all(
            self._get_base_open_sales_query()
            .where(Sale.due_date.is_not(None), Sale.customer_id.is_not(None))
            .options(selectinload(Sale.customer))
            .order_by(asc(Sale.due_date))
        )
        for sale in sales:
            remaining = to_money(sale.remaining_balance)
            if is_overdue(sale, now):
                days = (today - sale.due_date).days
                alerts.append(CreditAlert(
                    type=AlertType.OVERDUE,
                    severity=AlertSeverity.HIGH,
                    customer_id=sale.customer_id,
                    customer_name=sale.customer.name,
                    sale_id=sale.id,
                    folio=sale.folio,
                    amount=remaining,
                    due_date=sale.due_date,
                    days=days,
                    message=f"Venta {sale.folio} vencida hace {days} día(s)"
                ))
            elif today <= sale.due_date <= due_soon_limit:
                days = (sale.due_date - today).days
                alerts.append(CreditAlert(
                    type=AlertType.DUE_SOON,
                    severity=AlertSeverity.MEDIUM,
                    customer_id=sale.customer_id,
                    customer_name=sale.customer.name,
                    sale_id=sale.id,
                    folio=sale.folio,
                    amount=remaining,
                    due_date=sale.due_date,
                    days=days,
                    message=f"Venta {sale.folio} vence en {days} día(s)"
                ))

        # Clientes sin límite de crédito no generan alertas de uso
        customers = await self.repo.all(
            self.repo.select(Customer).where(
                Customer.credit_limit > 0,
                Customer.current_debt > 0,
                Customer.is_active.is_(True)
            )
        )
        for customer in customers:
            usage = credit_utilization(customer)
            if usage is None:
                continue
            if usage >= 100:
                alerts.append(CreditAlert(
                    type=AlertType.CREDIT_LIMIT_EXCEEDED,
                    severity=AlertSeverity.HIGH,
                    customer_id=customer.id,
                    customer_name=customer.name,
                    amount=to_money(customer.current_debt),
                    usage_percent=usage,
                    message=f"{customer.name} excedió su límite de crédito ({usage}%)"
                ))
            elif usage >= settings.CREDIT_WARNING_PERCENT:
                alerts.append(CreditAlert(
                    type=AlertType.CREDIT_LIMIT_WARNING,
                    severity=AlertSeverity.MEDIUM,
                    customer_id=customer.id,
                    customer_name=customer.name,
                    amount=to_money(customer.current_debt),
                    usage_percent=usage,
                    message=f"{customer.name} está cerca de su límite de crédito ({usage}%)"
                ))

        alerts.sort(key=lambda alert: 0 if alert.severity == AlertSeverity.HIGH else 1)
        high = sum(1 for alert in alerts if alert.severity == AlertSeverity.HIGH)

        return CreditAlertsResponse(
            alerts=alerts,
            total=len(alerts),
            high=high,
            medium=len(alerts) - high
        )

    async def account_statement(self, customer_id: UUID, now: Optional[datetime] = None) -> AccountStatement:
        now = as_utc(now or utcnow())
        today = now.date()
        customer = await self.repo.get(Customer, customer_id, label="Cliente")

        sales = await self.repo.all(
            self._get_base_open_sales_query()
            .where(Sale.customer_id == customer.id)
            .order_by(asc(Sale.created_at))
        )
        payments = await self.repo.all(
            self.repo.select(CustomerPayment)
            .where(CustomerPayment.customer_id == customer.id)
            .order_by(desc(CustomerPayment.payment_date))
            .limit(10)
        )

        pending_sales = []
        overdue_count = 0
        due_soon_count = 0
        for sale in sales:
            overdue = is_overdue(sale, now)
            if overdue:
                overdue_count += 1
            elif sale.due_date and today <= sale.due_date <= today + timedelta(days=settings.DUE_SOON_DAYS):
                due_soon_count += 1
            item = StatementSaleOut.model_validate(sale)
            item.is_overdue = overdue
            pending_sales.append(item)

        credit_limit = to_money(customer.credit_limit)
        current_debt = to_money(customer.current_debt)

        return AccountStatement(
            customer=CustomerBalanceOut.model_validate(customer),
            summary=AccountStatementSummary(
                credit_limit=credit_limit,
                current_debt=current_debt,
                available_credit=max(ZERO, credit_limit - current_debt),
                usage_percent=credit_utilization(customer),
                open_sales=len(sales),
                overdue_sales=overdue_count,
                due_soon_sales=due_soon_count
            ),
            pending_sales=pending_sales,
            recent_payments=[StatementPaymentOut.model_validate(p) for p in payments]
        )

    async def collections_summary(self, start_date: date, end_date: date) -> CollectionsSummaryResponse:
        if end_date < start_date:
            raise ValidationError("La fecha final debe ser mayor o igual a la fecha inicial")

        period_start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        period_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)

        rows = await self.repo.execute(
            self.repo.select(
                CustomerPayment,
                CustomerPayment.payment_method,
                func.count(CustomerPayment.id),
                func.coalesce(func.sum(CustomerPayment.amount), 0)
            )
            .where(
                CustomerPayment.payment_date >= period_start,
                CustomerPayment.payment_date < period_end
            )
            .group_by(CustomerPayment.payment_method)
        )
        by_method = [
            CollectionsByMethod(payment_method=method, count=count, amount=to_money(amount))
            for method, count, amount in rows.all()
        ]
        total_collected = to_money(sum((item.amount for item in by_method), ZERO))
        payments_count = sum(item.count for item in by_method)

        credit_row = (await self.repo.execute(
            self.repo.select(Sale, func.count(Sale.id), func.coalesce(func.sum(Sale.total), 0))
            .where(
                Sale.payment_method == PaymentMethod.CREDITO,
                Sale.status.notin_(CLOSED_SALE_STATUSES),
                Sale.created_at >= period_start,
                Sale.created_at < period_end
            )
        )).one()
        credit_sales_count, credit_sales_total = credit_row[0], to_money(credit_row[1])

        collection_rate = None
        if credit_sales_total > ZERO:
            collection_rate = to_money(total_collected / credit_sales_total * 100)

        return CollectionsSummaryResponse(
            period_start=start_date,
            period_end=end_date,
            total_collected=total_collected,
            payments_count=payments_count,
            credit_sales_total=credit_sales_total,
            credit_sales_count=credit_sales_count,
            collection_rate=collection_rate,
            by_method=by_method
        )

    async def _top_debtors(self) -> List[TopDebtor]:
        customers = await self.repo.all(
            self.repo.select(Customer)
            .where(Customer.current_debt > 0)
            .order_by(desc(Customer.current_debt))
            .limit(settings.AGING_TOP_DEBTORS)
        )
        return [
            TopDebtor(
                customer_id=customer.id,
                customer_name=customer.name,
                current_debt=to_money(customer.current_debt),
                credit_limit=to_money(customer.credit_limit),
                usage_percent=credit_utilization(customer)
            )
            for customer in customers
        ]
