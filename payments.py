"""
Stripe payment-intent gateway.

Only intent creation and intent lookup are used here. Capture and settlement
happen between the client and Stripe; the booking workflow asks this gateway
whether an intent succeeded before recording a paid booking.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import stripe

import config
from errors import DependencyError

logger = logging.getLogger(__name__)


@dataclass
class IntentStatus:
    id: str
    status: str
    session_id: Optional[str]
    amount: int


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class PaymentGateway:
    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.api_key = config.STRIPE_SECRET_KEY if api_key is None else api_key
        self.currency = currency or config.PAYMENT_CURRENCY

    def _require_key(self) -> str:
        if not self.api_key:
            raise DependencyError("Payment processor is not configured")
        return self.api_key

    def create_intent(self, amount: float, session_id: str) -> str:
        """Create a PaymentIntent and return its client secret."""
        api_key = self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                metadata={"sessionId": session_id},
                api_key=api_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe error creating PaymentIntent for session %s: %s", session_id, e)
            raise DependencyError("Error creating PaymentIntent.") from e
        logger.info("Created PaymentIntent %s for session %s", intent.id, session_id)
        return intent.client_secret

    def retrieve_intent(self, intent_id: str) -> IntentStatus:
        api_key = self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=api_key)
        except stripe.InvalidRequestError as e:
            # unknown intent id
            logger.warning("PaymentIntent %s lookup rejected: %s", intent_id, e)
            return IntentStatus(id=intent_id, status="unknown", session_id=None, amount=0)
        except stripe.StripeError as e:
            logger.error("Stripe error retrieving PaymentIntent %s: %s", intent_id, e)
            raise DependencyError("Error verifying payment.") from e
        try:
            session_id = intent.metadata["sessionId"]
        except (KeyError, TypeError):
            session_id = None
        return IntentStatus(id=intent.id, status=intent.status, session_id=session_id, amount=intent.amount)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; tests override it with a fake gateway."""
    return PaymentGateway()
