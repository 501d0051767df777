"""
Helper para cálculo de totales de documentos (cotizaciones y pedidos en línea)
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional
from dataclasses import dataclass

from app.core.config import settings
from app.common.money import to_money, ZERO


@dataclass(frozen=True)
class LineAmount:
    quantity: int
    unit_price: Decimal
    discount: Decimal = ZERO

    @property
    def subtotal(self) -> Decimal:
        return to_money(Decimal(self.quantity) * to_money(self.unit_price) - to_money(self.discount))


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


class TaxCalculator:
    """Calcula subtotal, impuesto y total con una tasa única"""

    def __init__(self, tax_rate: Optional[Decimal] = None):
        self.tax_rate = Decimal(str(tax_rate)) if tax_rate is not None else settings.DEFAULT_TAX_RATE

    def calculate_totals(self, lines: Iterable[LineAmount]) -> DocumentTotals:
        """
        Calcular los totales de un documento

        Args:
            lines: Líneas con cantidad, precio unitario y descuento

        Returns:
            Subtotal (suma de líneas), impuesto y total
        """
        subtotal = sum((line.subtotal for line in lines), ZERO)
        tax = self._calculate_tax_amount(subtotal)
        return DocumentTotals(subtotal=subtotal, tax=tax, total=to_money(subtotal + tax))

    def _calculate_tax_amount(self, base_amount: Decimal) -> Decimal:
        tax_amount = base_amount * self.tax_rate
        # Redondear a 2 decimales usando ROUND_HALF_UP (redondeo comercial)
        return tax_amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
