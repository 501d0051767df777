from typing import Dict, List, Optional
from uuid import UUID
from datetime import datetime, timedelta
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from fastapi import HTTPException

from app.core.config import settings
from app.common.exceptions import (
    AlreadyConvertedError, InvalidStateError, ExpiredError, UnsupportedTypeError,
    StockError, ValidationError, PaymentDeclinedError, InternalError
)
from app.common.mixins import utcnow
from app.common.money import ZERO
from app.common.tenancy import TenantRepository
from app.modules.customers.models import Customer
from app.modules.folios.service import FolioSequencer, FolioSeries, translate_integrity_error
from app.modules.inventory.service import StockLedger
from app.modules.online_orders.models import OnlineOrder, OrderPaymentMethod, OrderPaymentStatus, OrderStatus
from app.modules.payments.gateway import PaymentGateway
from app.modules.payments.schemas import CardData
from app.modules.payments.service import PaymentLedger
from app.modules.products.models import Product, MovementType
from app.modules.quotations.models import Quotation
from app.modules.sales.models import (
    Sale, SaleItem, SaleStatus, SourceType, PaymentMethod, PaymentStatus
)
from app.modules.sales.schemas import PaymentDecision, SaleOut
from app.modules.sales.sources import (
    ConversionSource, QuotationSource, OnlineOrderSource, SourceLine, CustomerRef
)

logger = logging.getLogger(__name__)


class FulfillmentService:
    """
    Orquestador de conversión de documentos (cotización / pedido en línea) a venta.

    Toda la conversión ocurre en una sola transacción: cliente, folio, venta,
    partidas, salidas de inventario, cartera y marca del documento de origen.
    """

    def __init__(self, repo: TenantRepository):
        self.repo = repo
        self.folios = FolioSequencer(repo)
        self.stock = StockLedger(repo)
        self.ledger = PaymentLedger(repo)

    async def convert_to_sale(
        self,
        source_id: UUID,
        source_kind: SourceType,
        decision: Optional[PaymentDecision] = None
    ) -> SaleOut:
        """Convertir un documento de origen en venta."""
        try:
            source = await self._load_source(source_id, SourceType(source_kind))
            decision = self._resolve_decision(source, decision)
            sale = await self.convert(source, decision)
            await self.repo.commit()

            logger.info(
                f"Sale {sale.folio} created from {source.kind.value} {source.number} "
                f"({decision.payment_method.value}, total {sale.total})"
            )
            return SaleOut.model_validate(sale)

        except IntegrityError as e:
            await self.repo.rollback()
            raise translate_integrity_error(e)
        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error converting {source_kind} {source_id} to sale: {str(e)}", exc_info=True)
            raise InternalError("Error al convertir el documento en venta")

    async def convert(self, source: ConversionSource, decision: PaymentDecision) -> Sale:
        """
        Pasos de la conversión sobre un origen ya bloqueado.

        No hace commit: el llamador confirma o revierte la transacción.
        """
        now = utcnow()
        self._check_state(source, now)
        lines = source.items
        if not lines:
            raise ValidationError("El documento no tiene partidas")
        await self._check_stock(lines)

        # Cliente
        customer = await self._resolve_customer(source.customer_ref)

        # Folio
        folio = await self.folios.next_folio(FolioSeries.SALE)

        # Venta con sus partidas
        sale = Sale(
            folio=folio,
            customer_id=customer.id,
            user_id=self.repo.user_id,
            source_type=source.kind,
            source_id=source.id,
            subtotal=source.subtotal,
            tax=source.tax,
            total=source.total,
            payment_method=decision.payment_method,
            status=SaleStatus.COMPLETED,
            notes=decision.notes,
            items=[
                SaleItem(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount=line.discount,
                    total=line.total
                )
                for line in lines
            ]
        )

        # Cartera
        if decision.payment_method == PaymentMethod.CREDITO:
            sale.amount_paid = ZERO
            sale.remaining_balance = sale.total
            sale.payment_status = PaymentStatus.PENDING
            sale.due_date = decision.due_date or self._default_due_date(customer, now)
            self.ledger.charge_credit_sale(customer, sale.total)
        else:
            sale.amount_paid = sale.total
            sale.remaining_balance = ZERO
            sale.payment_status = PaymentStatus.PAID
            sale.due_date = None

        self.repo.add(sale)
        try:
            await self.repo.flush()
        except IntegrityError as e:
            raise translate_integrity_error(e, folio) from e

        # Salidas de inventario
        reason = f"Venta {folio} - {source.label} {source.number}"
        # Cliente ya bloqueado; productos en orden estable de id
        for line in sorted(lines, key=lambda entry: str(entry.product_id)):
            await self.stock.apply_movement(
                product_id=line.product_id,
                movement_type=MovementType.SALIDA,
                quantity=line.quantity,
                reason=reason,
                sale_id=sale.id
            )

        # Documento de origen consumido
        source.mark_consumed(sale, now)
        await self.repo.flush()

        return sale

    async def process_card_payment(
        self,
        order_id: UUID,
        card: CardData,
        gateway: PaymentGateway
    ) -> SaleOut:
        """
        Cobra un pedido en línea con tarjeta y, si la pasarela aprueba,
        lo convierte en venta con método TARJETA.
        """
        try:
            order = await self.repo.get(OnlineOrder, order_id, for_update=True, label="Pedido")
            source = OnlineOrderSource(order)

            if order.payment_method != OrderPaymentMethod.CARD:
                raise ValidationError("El pedido no está configurado para pago con tarjeta")
            if order.payment_status == OrderPaymentStatus.PAID:
                raise InvalidStateError("El pedido ya fue pagado")
            self._check_state(source, utcnow(), settling=True)
            await self._check_stock(source.items)

            settlement = await gateway.charge(order.total, card, order.order_number)

            if not settlement.success:
                order.payment_status = OrderPaymentStatus.FAILED
                order.status = OrderStatus.FAILED
                order.payment_error = settlement.error
                await self.repo.commit()
                logger.warning(f"Card payment declined for order {order.order_number}: {settlement.error}")
                raise PaymentDeclinedError(
                    settlement.error or "El pago fue rechazado",
                    order_id=str(order.id)
                )

            order.payment_status = OrderPaymentStatus.PAID
            order.payment_reference = settlement.transaction_id
            order.payment_error = None
            await self.repo.commit()
            logger.info(f"Card payment approved for order {order.order_number}: {settlement.transaction_id}")

        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error processing card payment for order {order_id}: {str(e)}", exc_info=True)
            raise InternalError("Error procesando el pago del pedido")

        # El cobro queda registrado aunque la conversión falle; puede reintentarse
        return await self.convert_to_sale(
            order_id,
            SourceType.ONLINE_ORDER,
            PaymentDecision(payment_method=PaymentMethod.TARJETA)
        )

    # ===== HELPERS =====

    async def _load_source(self, source_id: UUID, source_kind: SourceType) -> ConversionSource:
        if source_kind == SourceType.QUOTATION:
            quotation = await self.repo.get(
                Quotation, source_id,
                for_update=True,
                options=(selectinload(Quotation.items),),
                label="Cotización"
            )
            return QuotationSource(quotation)

        order = await self.repo.get(OnlineOrder, source_id, for_update=True, label="Pedido")
        return OnlineOrderSource(order)

    def _resolve_decision(self, source: ConversionSource, decision: Optional[PaymentDecision]) -> PaymentDecision:
        if isinstance(source, OnlineOrderSource):
            if decision is None:
                return PaymentDecision(payment_method=source.default_payment_method)
            if decision.payment_method is None:
                return decision.model_copy(update={"payment_method": source.default_payment_method})
            if (
                source.record.payment_status == OrderPaymentStatus.PAID
                and source.record.payment_method == OrderPaymentMethod.CARD
                and decision.payment_method != PaymentMethod.TARJETA
            ):
                raise ValidationError("Un pedido pagado con tarjeta solo puede convertirse con método TARJETA")
            return decision

        if decision is None or decision.payment_method is None:
            raise ValidationError("Debe indicar la forma de pago")
        return decision

    def _check_state(self, source: ConversionSource, now: datetime, settling: bool = False) -> None:
        if source.is_converted:
            raise AlreadyConvertedError(f"{source.label} {source.number} ya fue convertida a venta")
        if source.is_cancelled:
            raise InvalidStateError(f"{source.label} {source.number} no puede convertirse en su estado actual")
        if source.is_expired(now):
            raise ExpiredError(f"{source.label} {source.number} ha expirado")
        if not source.supports_conversion:
            raise UnsupportedTypeError(f"{source.label} {source.number} es una solicitud de cotización")
        if not settling and isinstance(source, OnlineOrderSource) and source.requires_card_settlement:
            raise InvalidStateError(f"{source.label} {source.number} debe pagarse con tarjeta antes de convertirse")

    async def _check_stock(self, lines: List[SourceLine]) -> None:
        """Valida stock de todas las partidas y reporta cada producto sin existencia suficiente."""
        requested: Dict[UUID, int] = {}
        names: Dict[UUID, Optional[str]] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
            names.setdefault(line.product_id, line.product_name)

        products = await self.repo.all(
            self.repo.select(Product).where(Product.id.in_(list(requested.keys())))
        )
        by_id = {product.id: product for product in products}

        failing = []
        for product_id, quantity in requested.items():
            product = by_id.get(product_id)
            available = product.stock if product is not None else 0
            if available < quantity:
                failing.append({
                    "product_id": str(product_id),
                    "product_name": product.name if product is not None else names.get(product_id),
                    "requested": quantity,
                    "available": available
                })

        if failing:
            logger.warning(f"Stock validation failed for {len(failing)} product(s)")
            raise StockError(failing, "Stock insuficiente para una o más partidas")

    async def _resolve_customer(self, ref: CustomerRef) -> Customer:
        if ref.customer_id is not None:
            return await self.repo.get(Customer, ref.customer_id, for_update=True, label="Cliente")

        email = (ref.email or "").strip().lower()
        if not email:
            raise ValidationError("El documento no tiene cliente ni correo electrónico")

        customer = None
        base = self.repo.select(Customer).where(func.lower(Customer.email) == email)
        if ref.phone:
            customer = await self.repo.first(
                base.where(Customer.phone == ref.phone).with_for_update()
                .execution_options(populate_existing=True)
            )
        if customer is None:
            customer = await self.repo.first(
                base.order_by(Customer.created_at).with_for_update()
                .execution_options(populate_existing=True)
            )

        if customer is None:
            customer = Customer(
                name=ref.name or email,
                email=email,
                phone=ref.phone,
                address=ref.address,
                credit_limit=ZERO,
                current_debt=ZERO,
                payment_terms_days=0
            )
            self.repo.add(customer)
            await self.repo.flush()
            logger.info(f"Customer {customer.id} created from online order ({email})")
            return customer

        # Datos de contacto más recientes
        if ref.name:
            customer.name = ref.name
        if ref.phone:
            customer.phone = ref.phone
        if ref.address:
            customer.address = ref.address
        return customer

    def _default_due_date(self, customer: Customer, now: datetime):
        days = customer.payment_terms_days or settings.DEFAULT_CREDIT_DAYS
        return (now + timedelta(days=days)).date()
