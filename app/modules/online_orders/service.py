from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException

from app.common.exceptions import NotFoundError, InternalError
from app.common.tenancy import TenantRepository
from app.modules.folios.service import FolioSequencer, FolioSeries, translate_integrity_error
from app.modules.online_orders.models import OnlineOrder, OrderStatus, OrderPaymentStatus
from app.modules.online_orders.schemas import OnlineOrderCreate, OnlineOrderOut
from app.modules.products.models import Product
from app.modules.taxes.calculator import TaxCalculator, LineAmount

logger = logging.getLogger(__name__)


class OnlineOrderService:
    def __init__(self, repo: TenantRepository):
        self.repo = repo
        self.folios = FolioSequencer(repo)
        self.calculator = TaxCalculator()

    async def create_order(self, order_data: OnlineOrderCreate) -> OnlineOrderOut:
        """Registrar un pedido de la tienda en línea con precios vigentes del catálogo."""
        number = None
        try:
            items = []
            lines = []
            for item_data in order_data.items:
                product = await self.repo.get(Product, item_data.product_id, label="Producto")
                if not product.is_active:
                    raise NotFoundError("Producto no encontrado")

                line = LineAmount(quantity=item_data.quantity, unit_price=product.price)
                lines.append(line)
                items.append({
                    "product_id": str(product.id),
                    "product_name": product.name,
                    "quantity": item_data.quantity,
                    "price": str(line.unit_price),
                    "subtotal": str(line.subtotal)
                })

            totals = self.calculator.calculate_totals(lines)
            number = await self.folios.next_folio(FolioSeries.ONLINE_ORDER)

            order = OnlineOrder(
                order_number=number,
                type=order_data.type,
                status=OrderStatus.PENDING,
                customer_name=order_data.customer_name,
                customer_email=str(order_data.customer_email).lower(),
                customer_phone=order_data.customer_phone,
                customer_address=order_data.customer_address,
                notes=order_data.notes,
                items=items,
                subtotal=totals.subtotal,
                tax=totals.tax,
                total=totals.total,
                payment_method=order_data.payment_method,
                payment_status=OrderPaymentStatus.PENDING
            )
            self.repo.add(order)
            await self.repo.flush()
            await self.repo.commit()

            logger.info(f"Online order {number} created ({order_data.type.value}, total {totals.total})")
            return OnlineOrderOut.model_validate(order)

        except IntegrityError as e:
            await self.repo.rollback()
            raise translate_integrity_error(e, number)
        except HTTPException:
            await self.repo.rollback()
            raise
        except Exception as e:
            await self.repo.rollback()
            logger.error(f"Error creating online order: {str(e)}", exc_info=True)
            raise InternalError("Error al registrar el pedido")

    async def get_order(self, order_id: UUID) -> OnlineOrderOut:
        order = await self.repo.get(OnlineOrder, order_id, label="Pedido")
        return OnlineOrderOut.model_validate(order)
