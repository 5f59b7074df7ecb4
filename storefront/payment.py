"""
Payment processor boundary.

The checkout orchestrator only sees ``PaymentCapability``; the Stripe
implementation below tokenizes card input and confirms a PaymentIntent with
the publishable key, the same calls Stripe's browser SDK makes.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import stripe

from storefront.config import Config
from storefront.models import CardDetails, CollectResult, ConfirmResult, PaymentErrorInfo
from storefront.validators import validate_card

logger = logging.getLogger(__name__)


class PaymentCapability(ABC):
    """Collects payment details and confirms a payment intent"""

    @abstractmethod
    def collect_details(self) -> CollectResult:
        """Validate (and tokenize) the entered details before any confirmation"""
        ...

    @abstractmethod
    def confirm(self, client_secret: str, return_url: str) -> ConfirmResult:
        """Confirm the intent identified by ``client_secret``"""
        ...


def intent_status(intent: Any) -> Optional[str]:
    """Status of a payment intent given as a mapping or an SDK object"""
    if intent is None:
        return None
    if isinstance(intent, Mapping):
        return intent.get("status")
    return getattr(intent, "status", None)


def _error_info(error: "stripe.StripeError") -> PaymentErrorInfo:
    details = getattr(error, "error", None)
    return PaymentErrorInfo(
        message=getattr(error, "user_message", None) or str(error) or "Payment failed",
        code=getattr(error, "code", None),
        type=getattr(details, "type", None)
    )


class StripePaymentCapability(PaymentCapability):
    """Card payments through Stripe using only the publishable key"""

    def __init__(self, card: CardDetails, publishable_key: Optional[str] = None):
        self.card = card
        self.publishable_key = publishable_key or Config.STRIPE_PUBLISHABLE_KEY
        self.payment_method_id: Optional[str] = card.payment_method_id

    def collect_details(self) -> CollectResult:
        if not self.publishable_key:
            return CollectResult(error=PaymentErrorInfo(
                message="Card payments are not configured", code="missing_publishable_key"
            ))

        if self.payment_method_id:
            return CollectResult(payment_method_id=self.payment_method_id)

        errors = validate_card(self.card.number, self.card.exp_month, self.card.exp_year, self.card.cvc)
        if errors:
            field, message = next(iter(errors.items()))
            return CollectResult(error=PaymentErrorInfo(
                message=message, code=f"invalid_{field}", type="validation_error"
            ))

        try:
            payment_method = stripe.PaymentMethod.create(
                type="card",
                card={
                    "number": self.card.number.replace(" ", ""),
                    "exp_month": self.card.exp_month,
                    "exp_year": self.card.exp_year,
                    "cvc": self.card.cvc,
                },
                api_key=self.publishable_key
            )
        except stripe.StripeError as e:
            logger.warning(f"Card tokenization failed: {e}")
            return CollectResult(error=_error_info(e))

        self.payment_method_id = payment_method["id"]
        return CollectResult(payment_method_id=self.payment_method_id)

    def confirm(self, client_secret: str, return_url: str) -> ConfirmResult:
        if not self.payment_method_id:
            return ConfirmResult(error=PaymentErrorInfo(
                message="Payment details have not been collected", code="payment_method_missing"
            ))

        intent_id = client_secret.split("_secret_")[0]
        try:
            intent = stripe.PaymentIntent.confirm(
                intent_id,
                client_secret=client_secret,
                payment_method=self.payment_method_id,
                return_url=return_url,
                api_key=self.publishable_key
            )
        except stripe.StripeError as e:
            logger.warning(f"Payment confirmation failed for intent {intent_id}: {e}")
            return ConfirmResult(error=_error_info(e))

        return ConfirmResult(payment_intent=intent)
