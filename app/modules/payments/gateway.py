"""
Colaborador de pasarela de pago.

Solo existe la pasarela simulada; la integración con un procesador real
queda fuera del motor. El contrato es `charge(amount, card, reference)`
que devuelve un SettlementResult.
"""
from decimal import Decimal
from uuid import uuid4
import logging

from app.core.config import settings
from app.modules.payments.schemas import CardData, SettlementResult

logger = logging.getLogger(__name__)


class PaymentGateway:
    async def charge(self, amount: Decimal, card: CardData, reference: str) -> SettlementResult:
        raise NotImplementedError


class MockPaymentGateway(PaymentGateway):
    """Aprueba todo cargo salvo las tarjetas terminadas en MOCK_GATEWAY_DECLINE_LAST4."""

    def __init__(self, decline_last4: str = None):
        self.decline_last4 = decline_last4 or settings.MOCK_GATEWAY_DECLINE_LAST4

    async def charge(self, amount: Decimal, card: CardData, reference: str) -> SettlementResult:
        if amount <= 0:
            return SettlementResult(success=False, error="Monto inválido para el cargo")

        if card.last4 == self.decline_last4:
            logger.info(f"Mock gateway declined charge for {reference} (card ****{card.last4})")
            return SettlementResult(success=False, error="Tarjeta rechazada por el emisor")

        transaction_id = f"MOCK-{uuid4().hex[:12].upper()}"
        logger.info(f"Mock gateway approved charge for {reference}: {transaction_id} ({amount})")
        return SettlementResult(success=True, transaction_id=transaction_id)


class DisabledPaymentGateway(PaymentGateway):
    async def charge(self, amount: Decimal, card: CardData, reference: str) -> SettlementResult:
        return SettlementResult(success=False, error="Los pagos con tarjeta no están habilitados")


def get_payment_gateway() -> PaymentGateway:
    """Dependencia: pasarela según PAYMENT_MODE."""
    if settings.PAYMENT_MODE == "mock":
        return MockPaymentGateway()
    return DisabledPaymentGateway()
