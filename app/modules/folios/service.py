"""
Generación de folios por serie.

Cada serie toma el último documento creado del tenant, extrae el sufijo
numérico y lo incrementa. La unicidad la garantiza la base de datos con
restricciones únicas por tenant; una colisión al insertar se reporta como
FolioConflictError (reintentable).
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional
import enum
import logging
import re

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError

from app.common.exceptions import AlreadyConvertedError, FolioConflictError, InternalError
from app.common.mixins import utcnow
from app.common.tenancy import TenantRepository
from app.modules.sales.models import Sale
from app.modules.quotations.models import Quotation
from app.modules.online_orders.models import OnlineOrder

logger = logging.getLogger(__name__)

_TRAILING_DIGITS = re.compile(r"(\d+)$")


class FolioSeries(str, enum.Enum):
    SALE = "SALE"
    QUOTATION = "QUOTATION"
    ONLINE_ORDER = "ONLINE_ORDER"


@dataclass(frozen=True)
class SeriesDefinition:
    model: Any
    column_name: str
    prefix: str
    width: int
    dated: bool  # incluye YYMM después del prefijo

    @property
    def column(self):
        return getattr(self.model, self.column_name)


SERIES: Dict[FolioSeries, SeriesDefinition] = {
    FolioSeries.SALE: SeriesDefinition(Sale, "folio", "VTA", 6, False),
    FolioSeries.QUOTATION: SeriesDefinition(Quotation, "quotation_number", "COT", 4, True),
    FolioSeries.ONLINE_ORDER: SeriesDefinition(OnlineOrder, "order_number", "ON", 4, True),
}


def parse_folio_number(folio: Optional[str]) -> int:
    """Sufijo numérico de un folio; 0 si no hay folio o no termina en dígitos."""
    if not folio:
        return 0
    match = _TRAILING_DIGITS.search(folio)
    return int(match.group(1)) if match else 0


def format_folio(series: FolioSeries, number: int, today: Optional[date] = None) -> str:
    definition = SERIES[FolioSeries(series)]
    sequence = str(number).zfill(definition.width)
    if definition.dated:
        today = today or utcnow().date()
        return f"{definition.prefix}-{today.strftime('%y%m')}-{sequence}"
    return f"{definition.prefix}-{sequence}"


class FolioSequencer:
    def __init__(self, repo: TenantRepository):
        self.repo = repo

    async def next_folio(self, series: FolioSeries, today: Optional[date] = None) -> str:
        """Siguiente folio de la serie para el tenant del contexto."""
        definition = SERIES[FolioSeries(series)]
        last = await self.repo.scalar(
            self.repo.select(definition.model, definition.column)
            .order_by(desc(definition.model.created_at), desc(definition.column))
            .limit(1)
        )
        folio = format_folio(series, parse_folio_number(last) + 1, today)
        logger.debug(f"Next folio for {definition.prefix} (tenant {self.repo.tenant_id}): {folio}")
        return folio


# Nombre de la restricción (PostgreSQL) o columnas reportadas (SQLite)
_SOURCE_CONSTRAINT_MARKERS = ("uq_sale_tenant_source", "sales.source_id")
_NUMBER_CONSTRAINT_MARKERS = (
    "uq_sale_tenant_folio", "sales.folio",
    "uq_quotation_tenant_number", "quotations.quotation_number",
    "uq_online_order_tenant_number", "online_orders.order_number",
)


def translate_integrity_error(exc: IntegrityError, folio: Optional[str] = None):
    """
    Traduce una violación de integridad al error de dominio correspondiente.

    - Restricción de origen (una venta por documento): conversión concurrente
      ya confirmada -> AlreadyConvertedError.
    - Restricción de folio/número por tenant -> FolioConflictError (reintentable).
    - Cualquier otra violación (llaves foráneas, checks) -> InternalError.
    """
    message = str(exc.orig) if exc.orig is not None else str(exc)
    unique = "UNIQUE constraint failed" in message or "duplicate key value" in message
    if unique and any(marker in message for marker in _SOURCE_CONSTRAINT_MARKERS):
        return AlreadyConvertedError()
    if unique and any(marker in message for marker in _NUMBER_CONSTRAINT_MARKERS):
        logger.warning(f"Folio collision detected ({folio}): {message}")
        return FolioConflictError(folio=folio) if folio else FolioConflictError()
    logger.error(f"Integrity error while saving document {folio}: {message}")
    return InternalError("Error de integridad al guardar el documento")
