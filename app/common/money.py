"""
Helpers de montos monetarios (Decimal a 2 decimales, redondeo comercial).
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

# Tolerancia para considerar un saldo como liquidado
MONEY_EPSILON = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    return max(ZERO, to_money(value))
