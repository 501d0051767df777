from uuid import UUID
from datetime import timedelta
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from fastapi import HTTPException

from app.core.config import settings
from app.common.exceptions import InvalidStateError, InternalError
from app.common.mixins import utcnow
from app.common.money import to_money
from app.common.tenancy import TenantRepository
from app.modules.customers.models import Customer
from app.modules.folios.service import FolioSequencer, FolioSeries, translate_integrity_error
from app.modules.products.models import Product
from app.modules.quotations.models import Quotation, QuotationItem, QuotationStatus
from app.modules.quotations.schemas import QuotationCreate, QuotationOut
from app.modules.taxes.calculator import TaxCalculator, LineAmount

logger = logging.getLogger(__name__)

# Transiciones manuales permitidas; CONVERTED solo lo asigna la conversión a venta
ALLOWED_TRANSITIONS = {
    QuotationStatus.DRAFT: {QuotationStatus.SENT, QuotationStatus.CANCELLED},
    QuotationStatus.SENT: {QuotationStatus.CANCELLED, QuotationStatus.EXPIRED},
}


class QuotationService:
    def __init__(self, repo: TenantRepository):
        self.repo = repo
        self.folios = FolioSequencer(repo)
        self.calculator = TaxCalculator()

    async def create_quotation(self, quotation_data: QuotationCreate) -> QuotationOut:
        """Crear cotización con folio COT-YYMM-#### y totales calculados."""
        number = None
        try:
            await self.repo.get(Customer, quotation_data.customer_id, label="Cliente")

            items = []
            lines = []
            for position, item_data in enumerate(quotation_data.items):
                product = await self.repo.get(Product, item_data.product_id, label="Producto")
                unit_price = to_money(
                    item_data.unit_price if item_data.unit_price is not None else product.price
                )
                line = LineAmount(
                    quantity=item_data.quantity,
                    unit_price=unit_price,
                    discount=to_money(item_data.discount)
                )
                lines.append(line)
                items.append(QuotationItem(
                    product_id=product.id,
                    description=item_data.description or product.name,
                    quantity=item_data.quantity,
                    unit_price=unit_price,
                    discount=line.discount,
                    subtotal=line.subtotal,
                    sort_order=position
                ))

            totals = self.calculator.calculate_totals(lines)
            number = await self.folios.next_folio(FolioSeries.QUOTATION)

            quotation = Quotation(
                quotation_number=number,
                customer_id=quotation_data.customer_id,
                user_id=self.repo.user_id,
                status=QuotationStatus.DRAFT,
                valid_until=quotation_data.valid_until or utcnow() + timedelta(days=settings.QUOTATION_VALID_DAYS),
                notes=quotation_data.notes,
                subtotal=totals.subtotal,
                tax=totals.tax,
                total=totals.total,
                items=items
            )
            self.repo.add(quotation)
            await self.repo.flush()
            await self.repo.commit()

            logger.info(f"Quotation {number} created (total {totals.total})")
            return QuotationOut.model_validate(quotation)

        except IntegrityError as e:
            await self.repo.rollback()
            raise translate_integrity_error(e, number)
        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error creating quotation: {str(e)}", exc_info=True)
            raise InternalError("Error al crear la cotización")

    async def get_quotation(self, quotation_id: UUID) -> QuotationOut:
        quotation = await self.repo.get(
            Quotation, quotation_id, options=(selectinload(Quotation.items),), label="Cotización"
        )
        return QuotationOut.model_validate(quotation)

    async def change_status(self, quotation_id: UUID, status: QuotationStatus) -> QuotationOut:
        """Enviar, cancelar o vencer manualmente una cotización."""
        try:
            quotation = await self.repo.get(
                Quotation, quotation_id,
                for_update=True,
                options=(selectinload(Quotation.items),),
                label="Cotización"
            )
            status = QuotationStatus(status)
            if status not in ALLOWED_TRANSITIONS.get(quotation.status, set()):
                raise InvalidStateError(
                    f"No se puede pasar la cotización de {quotation.status.value} a {status.value}"
                )

            quotation.status = status
            await self.repo.commit()
            logger.info(f"Quotation {quotation.quotation_number} -> {status.value}")
            return QuotationOut.model_validate(quotation)

        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error updating quotation {quotation_id}: {str(e)}", exc_info=True)
            raise InternalError("Error al actualizar la cotización")
