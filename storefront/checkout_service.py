"""
Checkout service: validates the cart against live stock and places orders.
"""
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from storefront.api_client import ApiClient
from storefront.auth_service import AuthService
from storefront.cart_service import CartService
from storefront.exceptions import ApiError, StaleStateError, ValidationError
from storefront.formatters import DELIVERY_TIME_LABELS
from storefront.models import CartValidationResult, DeliveryAddress, PlacedOrder, ProductSnapshot
from storefront.payment import PaymentCapability
from storefront.payment_orchestrator import PaymentOrchestrator
from storefront.validators import validate_order

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("card", "cod")


def order_product_ids(order: Mapping[str, Any]) -> List[str]:
    """Product ids of an order record from the API"""
    ids = []
    for item in order.get("items") or []:
        product = item.get("product")
        if isinstance(product, dict):
            product = product.get("_id")
        if product:
            ids.append(str(product))
    return ids


class CheckoutService:
    """Service for checkout operations"""

    def __init__(self, api: ApiClient, cart_service: CartService, auth_service: Optional[AuthService] = None):
        self.api = api
        self.cart_service = cart_service
        self.auth_service = auth_service

    def fetch_live_products(self) -> Dict[str, Optional[ProductSnapshot]]:
        """Current state of every product in the cart; None for products that are gone"""
        live: Dict[str, Optional[ProductSnapshot]] = {}
        for item in self.cart_service.cart:
            product_id = item.product.id
            try:
                response = self.api.get_product(product_id)
            except ApiError as e:
                if e.status_code == 404:
                    live[product_id] = None
                    continue
                raise

            data = response.get("data") if isinstance(response, dict) else None
            record = (data or {}).get("product") or data
            try:
                live[product_id] = ProductSnapshot.model_validate(record)
            except PydanticValidationError:
                logger.warning(f"Unusable product record for {product_id}; treating as unavailable")
                live[product_id] = None
        return live

    def validate_against_live(self) -> CartValidationResult:
        return self.cart_service.validate_cart(self.fetch_live_products())

    def ensure_checkout_ready(self) -> CartValidationResult:
        """Raise unless the cart is non-empty and every row is purchasable"""
        if not self.cart_service.cart:
            raise ValidationError("Cannot checkout empty cart")
        result = self.validate_against_live()
        if not result.is_valid:
            raise StaleStateError(result)
        return result

    def place_order(
        self,
        address: Union[DeliveryAddress, Mapping[str, Any]],
        delivery_date: Optional[date],
        delivery_time: str = "morning",
        payment_method: str = "card",
        contact_number: Optional[str] = None,
        notes: str = ""
    ) -> PlacedOrder:
        """
        Place an order for the current cart:
        1. Refuse an empty cart
        2. Snapshot cart items
        3. Validate the order form (no network call on failure)
        4. Validate cart rows against live stock
        5. Create the order on the API
        6. Drop the ordered items from the cart for cash on delivery

        Card orders keep their items in the cart until the payment succeeds.
        """
        if not self.cart_service.cart:
            raise ValidationError("Cannot checkout empty cart")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method}",
                                  {"paymentMethod": "Choose card or cash on delivery"})
        if delivery_time not in DELIVERY_TIME_LABELS:
            raise ValidationError(f"Unsupported delivery time: {delivery_time}",
                                  {"deliveryTime": "Choose a delivery time slot"})

        items = self.cart_service.prepare_for_checkout()
        if not isinstance(address, DeliveryAddress):
            address = DeliveryAddress.model_validate(dict(address))

        if not contact_number and self.auth_service is not None and self.auth_service.user:
            contact_number = self.auth_service.user.get("phone")

        order_data = {
            "items": [{"product": item.product_id, "quantity": item.quantity} for item in items],
            "deliveryAddress": address.model_dump(by_alias=True),
            "contactNumber": contact_number or "",
            "deliveryDate": (
                datetime.combine(delivery_date, time.min, tzinfo=timezone.utc).isoformat()
                if delivery_date else None
            ),
            "deliveryTime": delivery_time,
            "paymentMethod": payment_method,
            "notes": notes,
        }

        errors = validate_order(order_data)
        if errors:
            raise ValidationError("Please fix the errors", errors)

        self.ensure_checkout_ready()

        response = self.api.create_order(order_data)
        order = ((response.get("data") or {}).get("order") if isinstance(response, dict) else None) or {}
        if not order.get("_id"):
            message = response.get("message") if isinstance(response, dict) else None
            raise ApiError(message or "Order was not created", 502, response)

        placed = PlacedOrder(
            order_id=order["_id"],
            order_number=str(order["orderNumber"]) if order.get("orderNumber") is not None else None,
            total_amount=order.get("totalAmount"),
            payment_method=payment_method,
            items=items
        )
        logger.info(f"Order created: {placed.order_id} ({payment_method}), {len(items)} items")

        if payment_method == "cod":
            self.cart_service.remove_many([item.product_id for item in items])

        return placed

    def create_payment_orchestrator(
        self,
        order_id: str,
        capability: PaymentCapability,
        product_ids: Sequence[str] = (),
        **kwargs: Any
    ) -> PaymentOrchestrator:
        """Orchestrator that removes ``product_ids`` from the cart once paid"""
        return PaymentOrchestrator(
            self.api,
            capability,
            order_id,
            cart_service=self.cart_service,
            order_product_ids=product_ids,
            **kwargs
        )
