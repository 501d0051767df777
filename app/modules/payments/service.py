from typing import List, Optional, Tuple
from uuid import UUID
from decimal import Decimal
from datetime import datetime
import logging

from sqlalchemy import func, asc
from fastapi import HTTPException

from app.common.exceptions import (
    AmountExceedsBalanceError, InvalidAmountError, InvalidStateError,
    NotFoundError, ValidationError, InternalError
)
from app.common.mixins import utcnow
from app.common.money import ZERO, MONEY_EPSILON, to_money, clamp_non_negative
from app.common.tenancy import TenantRepository
from app.modules.customers.models import Customer
from app.modules.customers.schemas import CustomerBalanceOut
from app.modules.payments.models import CustomerPayment
from app.modules.payments.schemas import CustomerPaymentOut, PaymentResult
from app.modules.sales.models import (
    Sale, SaleCancellation, PaymentMethod, PaymentStatus, CLOSED_SALE_STATUSES
)
from app.modules.sales.schemas import SaleBalanceOut

logger = logging.getLogger(__name__)


def settle_sale_balance(sale: Sale) -> None:
    """Recalcula saldo y estado de pago a partir de total y amount_paid."""
    sale.remaining_balance = clamp_non_negative(to_money(sale.total) - to_money(sale.amount_paid))
    sale.payment_status = (
        PaymentStatus.PAID if sale.remaining_balance <= MONEY_EPSILON else PaymentStatus.PARTIAL
    )


class PaymentLedger:
    """
    Libro de cartera de clientes.

    Único escritor de Customer.current_debt y de los saldos de las ventas a
    crédito. `apply_payment` maneja su propia transacción; los métodos de
    cargo/liberación participan en la transacción del llamador.
    """

    def __init__(self, repo: TenantRepository):
        self.repo = repo

    async def apply_payment(
        self,
        customer_id: UUID,
        amount: Decimal,
        payment_method: PaymentMethod,
        sale_id: Optional[UUID] = None,
        reference: Optional[str] = None,
        payment_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        distribute: bool = False
    ) -> PaymentResult:
        """Registrar un abono de un cliente."""
        amount = to_money(amount)
        if amount <= ZERO:
            raise InvalidAmountError("El monto del pago debe ser mayor a cero")

        payment_method = PaymentMethod(payment_method)
        if payment_method == PaymentMethod.CREDITO:
            raise ValidationError("Un abono no puede registrarse con método CREDITO")
        if sale_id and distribute:
            raise ValidationError("Un pago asignado a una venta no puede distribuirse")

        try:
            customer = await self.repo.get(Customer, customer_id, for_update=True, label="Cliente")

            payments: List[CustomerPayment] = []
            affected: List[Sale] = []
            sale = None
            unallocated = ZERO

            if sale_id:
                sale = await self._get_payable_sale(customer, sale_id)
                if amount > to_money(sale.remaining_balance):
                    logger.warning(
                        f"Payment of {amount} rejected for sale {sale.folio}: "
                        f"remaining balance is {sale.remaining_balance}"
                    )
                    raise AmountExceedsBalanceError(
                        f"El monto ({amount}) excede el saldo pendiente ({to_money(sale.remaining_balance)})",
                        remaining_balance=str(to_money(sale.remaining_balance))
                    )
                payments.append(self._record_payment(
                    customer, amount, payment_method, sale, reference, payment_date, notes
                ))
                self._apply_to_sale(sale, amount)
                affected.append(sale)

            elif distribute:
                allocations, unallocated = await self._allocate_fifo(customer, amount)
                for open_sale, allocated in allocations:
                    payments.append(self._record_payment(
                        customer, allocated, payment_method, open_sale, reference, payment_date, notes
                    ))
                    self._apply_to_sale(open_sale, allocated)
                    affected.append(open_sale)
                if unallocated > ZERO:
                    payments.append(self._record_payment(
                        customer, unallocated, payment_method, None, reference, payment_date,
                        notes or "Abono a cuenta sin venta asignada"
                    ))

            else:
                # Abono general: solo afecta el saldo del cliente
                payments.append(self._record_payment(
                    customer, amount, payment_method, None, reference, payment_date, notes
                ))
                unallocated = amount

            # Cada movimiento guarda lo que realmente descontó de la deuda
            for payment in payments:
                payment.debt_applied = self._decrease_debt(customer, payment.amount)

            await self.repo.flush()
            await self.repo.commit()

            logger.info(
                f"Payment of {amount} applied for customer {customer.id} "
                f"({len(payments)} movement(s), unallocated {unallocated})"
            )

            return PaymentResult(
                payments=[CustomerPaymentOut.model_validate(p) for p in payments],
                sale=SaleBalanceOut.model_validate(sale) if sale else None,
                affected_sales=[SaleBalanceOut.model_validate(s) for s in affected],
                customer=CustomerBalanceOut.model_validate(customer),
                unallocated_amount=unallocated
            )

        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error applying payment for customer {customer_id}: {str(e)}", exc_info=True)
            raise InternalError("Error registrando el pago")

    # ===== ESCRITURA DE DEUDA (transacción del llamador) =====

    def charge_credit_sale(self, customer: Customer, amount: Decimal) -> None:
        """Incrementa la deuda por una venta a crédito. El cliente debe estar bloqueado."""
        customer.current_debt = to_money(to_money(customer.current_debt) + to_money(amount))
        logger.info(f"Customer {customer.id} debt increased by {amount} -> {customer.current_debt}")

    async def release_credit_sale(self, sale: Sale) -> Tuple[Decimal, Decimal]:
        """
        Libera de la deuda del cliente el saldo pendiente de una venta cancelada.

        Los montos de la venta no se modifican. Devuelve (saldo liberado,
        monto descontado de current_debt); difieren cuando la deuda ya era
        menor al saldo.
        """
        if sale.customer_id is None or sale.payment_method != PaymentMethod.CREDITO:
            return ZERO, ZERO

        released = to_money(sale.remaining_balance)
        if released <= ZERO:
            return ZERO, ZERO

        customer = await self.repo.get(Customer, sale.customer_id, for_update=True, label="Cliente")
        applied = self._decrease_debt(customer, released)
        logger.info(f"Released {released} from customer {customer.id} debt (sale {sale.folio}, applied {applied})")
        return released, applied

    async def recompute_customer_debt(self, customer_id: UUID) -> CustomerBalanceOut:
        """
        Recalcula current_debt desde ventas, abonos y cancelaciones.

        deuda = saldos abiertos de ventas a crédito
                - lo descontado por abonos sin venta asignada
                + lo que el tope en cero no dejó descontar a abonos de venta
                  y a liberaciones por cancelación

        Reproduce exactamente las escrituras del libro, incluido el tope en cero.
        """
        try:
            customer = await self.repo.get(Customer, customer_id, for_update=True, label="Cliente")

            open_balance = await self.repo.scalar(
                self.repo.select(Sale, func.coalesce(func.sum(Sale.remaining_balance), 0)).where(
                    Sale.customer_id == customer.id,
                    Sale.payment_method == PaymentMethod.CREDITO,
                    Sale.status.notin_(CLOSED_SALE_STATUSES)
                )
            )
            general_credit = await self.repo.scalar(
                self.repo.select(CustomerPayment, func.coalesce(func.sum(CustomerPayment.debt_applied), 0)).where(
                    CustomerPayment.customer_id == customer.id,
                    CustomerPayment.sale_id.is_(None)
                )
            )
            payment_shortfall = await self.repo.scalar(
                self.repo.select(
                    CustomerPayment,
                    func.coalesce(func.sum(CustomerPayment.amount - CustomerPayment.debt_applied), 0)
                ).where(
                    CustomerPayment.customer_id == customer.id,
                    CustomerPayment.sale_id.is_not(None)
                )
            )
            release_shortfall = await self.repo.scalar(
                self.repo.select(
                    SaleCancellation,
                    func.coalesce(func.sum(SaleCancellation.released_balance - SaleCancellation.debt_released), 0)
                ).join_from(SaleCancellation, Sale, Sale.id == SaleCancellation.sale_id).where(
                    Sale.customer_id == customer.id
                )
            )

            derived = clamp_non_negative(
                to_money(open_balance) - to_money(general_credit)
                + to_money(payment_shortfall) + to_money(release_shortfall)
            )
            if derived != to_money(customer.current_debt):
                logger.warning(
                    f"Customer {customer.id} debt drift: stored={customer.current_debt}, derived={derived}"
                )
            customer.current_debt = derived

            await self.repo.commit()
            return CustomerBalanceOut.model_validate(customer)

        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error recomputing debt for customer {customer_id}: {str(e)}", exc_info=True)
            raise InternalError("Error recalculando la deuda del cliente")

    async def mark_overdue_sales(self, now: Optional[datetime] = None) -> int:
        """Marca como OVERDUE las ventas a crédito vencidas con saldo pendiente."""
        today = (now or utcnow()).date()
        try:
            sales = await self.repo.all(
                self.repo.select(Sale).where(
                    Sale.payment_method == PaymentMethod.CREDITO,
                    Sale.status.notin_(CLOSED_SALE_STATUSES),
                    Sale.remaining_balance > 0,
                    Sale.due_date.is_not(None),
                    Sale.due_date < today,
                    Sale.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.PARTIAL])
                ).with_for_update()
            )
            for sale in sales:
                sale.payment_status = PaymentStatus.OVERDUE

            await self.repo.commit()
            if sales:
                logger.info(f"Marked {len(sales)} sale(s) as OVERDUE for tenant {self.repo.tenant_id}")
            return len(sales)

        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error marking overdue sales: {str(e)}", exc_info=True)
            raise InternalError("Error actualizando ventas vencidas")

    # ===== HELPERS =====

    async def _get_payable_sale(self, customer: Customer, sale_id: UUID) -> Sale:
        sale = await self.repo.get(Sale, sale_id, for_update=True, label="Venta")
        if sale.customer_id != customer.id:
            raise NotFoundError("Venta no encontrada")
        if sale.status in CLOSED_SALE_STATUSES:
            raise InvalidStateError(f"La venta {sale.folio} está cancelada y no admite pagos")
        return sale

    async def _allocate_fifo(self, customer: Customer, amount: Decimal) -> Tuple[List[Tuple[Sale, Decimal]], Decimal]:
        """Reparte el abono entre ventas a crédito abiertas, la más antigua primero."""
        open_sales = await self.repo.all(
            self.repo.select(Sale).where(
                Sale.customer_id == customer.id,
                Sale.payment_method == PaymentMethod.CREDITO,
                Sale.status.notin_(CLOSED_SALE_STATUSES),
                Sale.remaining_balance > 0
            ).order_by(asc(Sale.created_at), asc(Sale.folio)).with_for_update()
        )

        allocations = []
        remaining = amount
        for sale in open_sales:
            if remaining <= ZERO:
                break
            allocated = min(remaining, to_money(sale.remaining_balance))
            allocations.append((sale, allocated))
            remaining = to_money(remaining - allocated)

        return allocations, remaining

    def _record_payment(
        self,
        customer: Customer,
        amount: Decimal,
        payment_method: PaymentMethod,
        sale: Optional[Sale],
        reference: Optional[str],
        payment_date: Optional[datetime],
        notes: Optional[str]
    ) -> CustomerPayment:
        payment = CustomerPayment(
            customer_id=customer.id,
            sale_id=sale.id if sale else None,
            amount=amount,
            debt_applied=ZERO,
            payment_method=payment_method,
            reference=reference,
            payment_date=payment_date or utcnow(),
            notes=notes,
            user_id=self.repo.user_id
        )
        self.repo.add(payment)
        return payment

    def _apply_to_sale(self, sale: Sale, amount: Decimal) -> None:
        sale.amount_paid = to_money(to_money(sale.amount_paid) + amount)
        settle_sale_balance(sale)

    def _decrease_debt(self, customer: Customer, amount: Decimal) -> Decimal:
        """Descuenta de la deuda sin bajar de cero; devuelve lo realmente descontado."""
        current = to_money(customer.current_debt)
        applied = min(current, to_money(amount))
        customer.current_debt = to_money(current - applied)
        return applied
