"""
Payment orchestration for one checkout attempt.

States: uninitialized -> intent_pending -> intent_ready -> submitting ->
succeeded | failed. Nothing is retried automatically. After ``dispose()``
late results are dropped without touching state or invoking callbacks.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Sequence

from storefront.api_client import ApiClient
from storefront.cart_service import CartService
from storefront.config import Config
from storefront.exceptions import PaymentError, StorageConnectionError, StorefrontException, ValidationError
from storefront.models import CheckoutState, ConfirmResult, PaymentSession
from storefront.payment import PaymentCapability, intent_status

logger = logging.getLogger(__name__)

# Intent statuses that are neither success nor failure yet
PENDING_INTENT_STATUSES = frozenset({"requires_action", "requires_confirmation", "processing"})

Callback = Callable[..., Any]


async def _invoke(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class PaymentOrchestrator:
    """Drives a payment intent from creation to confirmation"""

    def __init__(
        self,
        api: ApiClient,
        capability: PaymentCapability,
        order_id: str,
        *,
        cart_service: Optional[CartService] = None,
        order_product_ids: Sequence[str] = (),
        on_success: Optional[Callback] = None,
        on_cancel: Optional[Callback] = None,
        return_url_base: str = Config.FRONTEND_BASE_URL,
        success_delay: float = Config.PAYMENT_SUCCESS_DELAY_SECONDS
    ):
        self.api = api
        self.capability = capability
        self.order_id = order_id
        self.cart_service = cart_service
        self.order_product_ids = list(order_product_ids)
        self.on_success = on_success
        self.on_cancel = on_cancel
        self.return_url_base = return_url_base.rstrip("/")
        self.success_delay = success_delay

        self.state = CheckoutState.UNINITIALIZED
        self.client_secret: Optional[str] = None
        self.payment_intent: Any = None
        self.error: Optional[StorefrontException] = None

        self._disposed = False
        self._cancel_notified = False
        self._success_notified = False

    @property
    def return_url(self) -> str:
        return f"{self.return_url_base}/order-confirmation/{self.order_id}"

    @property
    def session(self) -> PaymentSession:
        return PaymentSession(
            order_id=self.order_id,
            client_secret=self.client_secret,
            state=self.state,
            error=self.error.message if self.error else None,
            payment_intent_status=intent_status(self.payment_intent)
        )

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Stop caring about in-flight work (the checkout view went away)"""
        self._disposed = True

    def _fail(self, error: StorefrontException) -> None:
        logger.warning(f"Payment for order {self.order_id} failed: {error.message}")
        self.error = error
        self.state = CheckoutState.FAILED

    async def start(self) -> PaymentSession:
        """Request a payment intent for the order"""
        if self.state is not CheckoutState.UNINITIALIZED:
            return self.session

        self.state = CheckoutState.INTENT_PENDING
        try:
            response = await asyncio.to_thread(self.api.create_payment_intent, self.order_id)
            if not isinstance(response, dict):
                response = {}
            data = response.get("data")
            client_secret = data.get("clientSecret") if isinstance(data, dict) else None
            if not (response.get("success") and client_secret):
                raise PaymentError(response.get("message") or "Failed to create payment intent")
        except Exception as e:
            if self._disposed:
                return self.session
            if isinstance(e, StorefrontException):
                self._fail(e)
            else:
                logger.error(f"Payment intent error: {type(e).__name__}: {e}", exc_info=True)
                self._fail(PaymentError("Failed to create payment intent"))
            if not self._cancel_notified:
                self._cancel_notified = True
                await _invoke(self.on_cancel)
            return self.session

        if self._disposed:
            return self.session
        self.client_secret = client_secret
        self.state = CheckoutState.INTENT_READY
        logger.info(f"Payment intent ready for order {self.order_id}")
        return self.session

    async def submit(self) -> PaymentSession:
        """
        Validate the entered details and confirm the payment.

        A pre-submit validation error returns the session to intent_ready
        with the error set and makes no confirmation call.
        """
        if self.state is not CheckoutState.INTENT_READY:
            raise ValidationError(f"Payment cannot be submitted while {self.state.value}")

        self.state = CheckoutState.SUBMITTING
        self.error = None
        try:
            collected = await asyncio.to_thread(self.capability.collect_details)
            if self._disposed:
                return self.session
            if collected.error:
                self.error = ValidationError(collected.error.message)
                self.state = CheckoutState.INTENT_READY
                return self.session

            confirmed = await asyncio.to_thread(self.capability.confirm, self.client_secret, self.return_url)
        except Exception as e:
            if self._disposed:
                return self.session
            logger.error(f"Payment processing error: {type(e).__name__}: {e}", exc_info=True)
            if isinstance(e, StorefrontException):
                self._fail(e)
            else:
                self._fail(PaymentError(str(e) or "An unexpected error occurred. Please try again."))
            return self.session

        if self._disposed:
            return self.session
        return await self._handle_confirmation(confirmed)

    async def _handle_confirmation(self, confirmed: ConfirmResult) -> PaymentSession:
        if confirmed.error:
            self._fail(PaymentError(confirmed.error.message, confirmed.error.code))
            return self.session

        self.payment_intent = confirmed.payment_intent
        status = intent_status(confirmed.payment_intent)
        if status == "succeeded":
            await self._succeed()
        elif status in PENDING_INTENT_STATUSES:
            logger.info(f"Payment for order {self.order_id} still in progress: {status}")
        else:
            self._fail(PaymentError(f"Payment was not completed (status: {status or 'unknown'})", status))
        return self.session

    async def refresh_status(self) -> PaymentSession:
        """Resolve a still-submitting payment from the order's payment status"""
        if self.state is not CheckoutState.SUBMITTING:
            return self.session

        response = await asyncio.to_thread(self.api.get_payment_status, self.order_id)
        if self._disposed:
            return self.session

        data = (response.get("data") if isinstance(response, dict) else None) or {}
        status = data.get("paymentStatus") or data.get("status")
        if status in ("paid", "succeeded"):
            await self._succeed()
        elif status == "failed":
            self._fail(PaymentError("Payment failed"))
        return self.session

    async def _succeed(self) -> None:
        self.state = CheckoutState.SUCCEEDED
        self.error = None
        logger.info(f"Payment succeeded for order {self.order_id}")

        if self.cart_service is not None and self.order_product_ids:
            try:
                self.cart_service.remove_many(self.order_product_ids)
            except StorageConnectionError as e:
                logger.error(f"Could not clear paid items from cart: {e.message}")

        # Grace period for the UI to show the confirmation
        if self.success_delay > 0:
            await asyncio.sleep(self.success_delay)

        if self._disposed or self._success_notified:
            return
        self._success_notified = True
        await _invoke(self.on_success, self.payment_intent)
