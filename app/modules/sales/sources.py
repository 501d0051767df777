"""
Documentos de origen convertibles en venta.

Cotizaciones y pedidos en línea se exponen al orquestador con la misma
interfaz mínima: líneas, totales, referencia de cliente, banderas de estado
y `mark_consumed`.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from app.common.mixins import as_utc
from app.common.money import to_money, ZERO
from app.modules.online_orders.models import (
    OnlineOrder, OrderType, OrderStatus, OrderPaymentMethod, OrderPaymentStatus
)
from app.modules.quotations.models import Quotation, QuotationStatus
from app.modules.sales.models import Sale, SourceType, PaymentMethod, PaymentStatus


@dataclass(frozen=True)
class SourceLine:
    product_id: UUID
    product_name: Optional[str]
    quantity: int
    unit_price: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class CustomerRef:
    """Cliente existente (customer_id) o datos de contacto para resolverlo."""
    customer_id: Optional[UUID] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ConversionSource:
    kind: SourceType
    label: str

    def __init__(self, record):
        self.record = record

    @property
    def id(self) -> UUID:
        return self.record.id

    @property
    def subtotal(self) -> Decimal:
        return to_money(self.record.subtotal)

    @property
    def tax(self) -> Decimal:
        return to_money(self.record.tax)

    @property
    def total(self) -> Decimal:
        return to_money(self.record.total)

    @property
    def number(self) -> str:
        raise NotImplementedError

    @property
    def items(self) -> List[SourceLine]:
        raise NotImplementedError

    @property
    def customer_ref(self) -> CustomerRef:
        raise NotImplementedError

    @property
    def is_converted(self) -> bool:
        raise NotImplementedError

    @property
    def is_cancelled(self) -> bool:
        """Estado terminal distinto de convertido (cancelado, fallido)."""
        raise NotImplementedError

    def is_expired(self, now: datetime) -> bool:
        return False

    @property
    def supports_conversion(self) -> bool:
        return True

    def mark_consumed(self, sale: Sale, now: datetime) -> None:
        raise NotImplementedError


class QuotationSource(ConversionSource):
    kind = SourceType.QUOTATION
    label = "Cotización"

    record: Quotation

    @property
    def number(self) -> str:
        return self.record.quotation_number

    @property
    def items(self) -> List[SourceLine]:
        return [
            SourceLine(
                product_id=item.product_id,
                product_name=item.description,
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
                discount=to_money(item.discount),
                total=to_money(item.subtotal)
            )
            for item in self.record.items
        ]

    @property
    def customer_ref(self) -> CustomerRef:
        return CustomerRef(customer_id=self.record.customer_id)

    @property
    def is_converted(self) -> bool:
        return (
            self.record.converted_to_sale_id is not None
            or self.record.status == QuotationStatus.CONVERTED
        )

    @property
    def is_cancelled(self) -> bool:
        return self.record.status == QuotationStatus.CANCELLED

    def is_expired(self, now: datetime) -> bool:
        if self.record.status == QuotationStatus.EXPIRED:
            return True
        return as_utc(now) > as_utc(self.record.valid_until)

    def mark_consumed(self, sale: Sale, now: datetime) -> None:
        self.record.status = QuotationStatus.CONVERTED
        self.record.converted_to_sale_id = sale.id
        self.record.converted_at = now


class OnlineOrderSource(ConversionSource):
    kind = SourceType.ONLINE_ORDER
    label = "Pedido en línea"

    record: OnlineOrder

    @property
    def number(self) -> str:
        return self.record.order_number

    @property
    def items(self) -> List[SourceLine]:
        lines = []
        for item in self.record.items or []:
            quantity = int(item["quantity"])
            price = to_money(item["price"])
            lines.append(SourceLine(
                product_id=UUID(str(item["product_id"])),
                product_name=item.get("product_name"),
                quantity=quantity,
                unit_price=price,
                discount=ZERO,
                total=to_money(item.get("subtotal", price * quantity))
            ))
        return lines

    @property
    def customer_ref(self) -> CustomerRef:
        return CustomerRef(
            name=self.record.customer_name,
            email=self.record.customer_email,
            phone=self.record.customer_phone,
            address=self.record.customer_address
        )

    @property
    def is_converted(self) -> bool:
        return self.record.sale_id is not None

    @property
    def is_cancelled(self) -> bool:
        return self.record.status in (OrderStatus.FAILED, OrderStatus.COMPLETED)

    @property
    def supports_conversion(self) -> bool:
        return self.record.type == OrderType.SALE

    @property
    def requires_card_settlement(self) -> bool:
        return (
            self.record.payment_method == OrderPaymentMethod.CARD
            and self.record.payment_status != OrderPaymentStatus.PAID
        )

    @property
    def default_payment_method(self) -> PaymentMethod:
        if self.record.payment_method == OrderPaymentMethod.CARD:
            return PaymentMethod.TARJETA
        return PaymentMethod.EFECTIVO

    def mark_consumed(self, sale: Sale, now: datetime) -> None:
        self.record.status = OrderStatus.COMPLETED
        self.record.sale_id = sale.id
        self.record.customer_id = sale.customer_id
        self.record.processed_at = now
        if sale.payment_status == PaymentStatus.PAID:
            self.record.payment_status = OrderPaymentStatus.PAID
