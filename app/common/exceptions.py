"""
Errores de dominio del motor de ventas y cartera.

Todos heredan de HTTPException para que el router los propague sin
traducción; `detail` siempre lleva un `code` estable y un `message`
legible, más los datos extra de cada caso (p. ej. las líneas sin stock).
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class DomainError(HTTPException):
    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Error en la operación"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        detail.update(extra)
        super().__init__(status_code=self.status_code, detail=detail)


# ===== VALIDACIÓN =====

class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "Datos inválidos"


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"
    default_message = "Monto inválido"


# ===== CONFLICTOS DE ESTADO =====

class AlreadyConvertedError(DomainError):
    code = "ALREADY_CONVERTED"
    status_code = status.HTTP_409_CONFLICT
    default_message = "El documento ya fue convertido a venta"


class AlreadyCancelledError(DomainError):
    code = "ALREADY_CANCELLED"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Esta venta ya está cancelada"


class InvalidStateError(DomainError):
    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "El documento no está en un estado válido para esta operación"


class ExpiredError(DomainError):
    code = "EXPIRED"
    status_code = status.HTTP_410_GONE
    default_message = "El documento ha expirado"


class UnsupportedTypeError(DomainError):
    code = "UNSUPPORTED_TYPE"
    status_code = 422
    default_message = "El tipo de documento no admite conversión a venta"


# ===== CONFLICTOS DE RECURSOS =====

class StockError(DomainError):
    code = "STOCK_ERROR"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Stock insuficiente"

    def __init__(self, lines: List[Dict[str, Any]], message: Optional[str] = None):
        self.lines = lines
        super().__init__(message, lines=lines)


class InsufficientStockError(DomainError):
    code = "INSUFFICIENT_STOCK"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Stock insuficiente"


class AmountExceedsBalanceError(DomainError):
    code = "AMOUNT_EXCEEDS_BALANCE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "El monto excede el saldo pendiente"


class FolioConflictError(DomainError):
    code = "FOLIO_CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_message = "El folio generado ya existe, intente nuevamente"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message, retryable=True, **extra)


class PaymentDeclinedError(DomainError):
    code = "PAYMENT_DECLINED"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "El pago fue rechazado"


# ===== NO ENCONTRADO / INTERNO =====

class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Recurso no encontrado"


class InternalError(DomainError):
    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Error interno del servidor"
