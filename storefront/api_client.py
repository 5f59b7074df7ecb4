"""
Gateway to the remote commerce API.

All outbound HTTP goes through ``ApiClient.request``. Responses are JSON
envelopes ``{success, message?, data?}``; a non-2xx status raises ApiError and
a transport failure raises NetworkError. Each call is made exactly once.
"""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests

from storefront.config import Config
from storefront.exceptions import ApiError, NetworkError, StorefrontException
from storefront.storage import KeyValueStorage

logger = logging.getLogger(__name__)

# (filename, file object or bytes, content type)
ImageUpload = Tuple[str, Any, str]


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _form_value(key: str, value: Any) -> str:
    if key == "nutritionalFacts":
        return json.dumps(value, default=_json_default)
    if key == "tags" and isinstance(value, (list, tuple)):
        return ",".join(str(tag) for tag in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _product_form(
    product_data: Mapping[str, Any],
    images: Iterable[ImageUpload],
    images_to_delete: Sequence[str] = ()
) -> List[Tuple[str, Any]]:
    """Multipart parts for product create/update"""
    parts: List[Tuple[str, Any]] = [
        (key, (None, _form_value(key, value)))
        for key, value in product_data.items()
        if value is not None
    ]
    if images_to_delete:
        parts.append(("imagesToDelete", (None, json.dumps(list(images_to_delete)))))
    parts.extend(("images", image) for image in images)
    return parts


def _require_success(response: Any, default_message: str, status_code: int) -> Dict:
    """Reject a 2xx reply that is not an envelope or reports ``success: false``"""
    if not isinstance(response, dict) or not response.get("success"):
        message = response.get("message") if isinstance(response, dict) else None
        raise ApiError(str(message) if message else default_message, status_code, response)
    return response


class ApiClient:
    """Typed wrappers over a single request primitive"""

    def __init__(
        self,
        storage: KeyValueStorage,
        base_url: str = Config.API_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = Config.API_TIMEOUT_SECONDS,
        token_key: str = Config.TOKEN_STORAGE_KEY,
        cart_key: str = Config.CART_STORAGE_KEY
    ):
        self.storage = storage
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.token_key = token_key
        self.cart_key = cart_key
        self.token: Optional[str] = storage.get(token_key) or None

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        body: Any = None,
        multipart: Optional[List[Tuple[str, Any]]] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        skip_auth: bool = False
    ) -> Any:
        """
        Perform one API call.

        Args:
            endpoint: Path under the API base, e.g. ``/api/products``
            method: HTTP method
            body: JSON-serializable payload
            multipart: Form parts; sent as multipart/form-data with the
                boundary chosen by the transport
            params: Query string parameters
            headers: Header overrides
            skip_auth: Do not attach the bearer token

        Returns:
            Decoded JSON (or text for non-JSON responses)

        Raises:
            ApiError: Non-success HTTP status
            NetworkError: The server could not be reached
        """
        url = f"{self.base_url}{endpoint}"
        request_headers = dict(headers or {})

        attach_token = bool(self.token) and not skip_auth
        if attach_token:
            request_headers["Authorization"] = f"Bearer {self.token}"

        data = None
        if multipart is not None:
            # The transport sets multipart/form-data with its own boundary
            request_headers = {k: v for k, v in request_headers.items() if k.lower() != "content-type"}
        else:
            if not any(k.lower() == "content-type" for k in request_headers):
                request_headers["Content-Type"] = "application/json"
            if body is not None:
                data = body if isinstance(body, (str, bytes)) else json.dumps(body, default=_json_default)

        logger.info(f"API request: {method} {endpoint} (auth={'yes' if attach_token else 'no'})")

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=data,
                files=multipart,
                headers=request_headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"API request failed: {method} {endpoint}: {type(e).__name__}: {e}")
            raise NetworkError() from e

        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
        else:
            payload = response.text

        if not response.ok:
            message = None
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("detail")
            message = str(message) if message else f"HTTP error! status: {response.status_code}"
            logger.warning(f"API error: {method} {endpoint} {response.status_code}: {message}")
            raise ApiError(message, response.status_code, payload)

        return payload

    # Token lifecycle

    def set_token(self, token: Optional[str]) -> None:
        if not token:
            self.clear_token()
            return
        self.token = token
        self.storage.set(self.token_key, token)

    def clear_token(self) -> None:
        self.token = None
        self.storage.remove(self.token_key)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    # Auth endpoints

    def _capture_token(self, response: Dict) -> None:
        data = response.get("data")
        token = data.get("token") if isinstance(data, dict) else None
        if token:
            self.set_token(token)

    def register(self, name: str, email: str, phone: str, password: str, role: str = "user") -> Dict:
        response = self.request("/api/auth/register", "POST", body={
            "name": name, "email": email, "phone": phone, "password": password, "role": role
        }, skip_auth=True)
        return _require_success(response, "Registration failed", 400)

    def login(self, email: str, password: str) -> Dict:
        response = self.request("/api/auth/login", "POST",
                                body={"email": email, "password": password}, skip_auth=True)
        response = _require_success(response, "Login failed", 401)
        self._capture_token(response)
        return response

    def logout(self) -> None:
        """Notify the server, then always drop the local token and cart"""
        try:
            self.request("/api/auth/logout", "POST")
        except StorefrontException as e:
            logger.info(f"Ignoring logout notification failure: {e.message}")
        finally:
            self.clear_token()
            self.storage.remove(self.cart_key)

    def get_profile(self) -> Dict:
        return self.request("/api/auth/me")

    def update_profile(self, data: Mapping[str, Any]) -> Dict:
        return self.request("/api/auth/profile", "PUT", body=dict(data))

    def change_password(self, current_password: str, new_password: str) -> Dict:
        return self.request("/api/auth/change-password", "PUT", body={
            "currentPassword": current_password, "newPassword": new_password
        })

    def request_password_reset(self, email: str) -> Dict:
        return self.request("/api/auth/forgot-password", "POST", body={"email": email}, skip_auth=True)

    def reset_password(self, token: str, new_password: str) -> Dict:
        return self.request("/api/auth/reset-password", "POST",
                            body={"token": token, "newPassword": new_password}, skip_auth=True)

    def verify_reset_token(self, token: str) -> Dict:
        return self.request("/api/auth/verify-reset-token", params={"token": token}, skip_auth=True)

    def refresh_token(self) -> Dict:
        response = self.request("/api/auth/refresh", "POST", skip_auth=True)
        response = _require_success(response, "Session refresh failed", 401)
        self._capture_token(response)
        return response

    # Addresses

    def add_address(self, address: Mapping[str, Any]) -> Dict:
        return self.request("/api/users/address", "POST", body=dict(address))

    def update_address(self, address_id: str, address: Mapping[str, Any]) -> Dict:
        return self.request(f"/api/users/address/{address_id}", "PUT", body=dict(address))

    def delete_address(self, address_id: str) -> Dict:
        return self.request(f"/api/users/address/{address_id}", "DELETE")

    # Products

    def get_products(self, filters: Optional[Mapping[str, Any]] = None) -> Dict:
        return self.request("/api/products", params=dict(filters) if filters else None)

    def get_product(self, product_id: str) -> Dict:
        return self.request(f"/api/products/{product_id}")

    def get_categories(self) -> Dict:
        return self.request("/api/products/categories")

    def get_brands(self) -> Dict:
        return self.request("/api/products/brands")

    def create_product(self, product_data: Mapping[str, Any], images: Iterable[ImageUpload] = ()) -> Dict:
        return self.request("/api/products", "POST", multipart=_product_form(product_data, images))

    def update_product(
        self,
        product_id: str,
        product_data: Mapping[str, Any],
        images: Iterable[ImageUpload] = (),
        images_to_delete: Sequence[str] = ()
    ) -> Dict:
        return self.request(f"/api/products/{product_id}", "PUT",
                            multipart=_product_form(product_data, images, images_to_delete))

    def delete_product(self, product_id: str) -> Dict:
        return self.request(f"/api/products/{product_id}", "DELETE")

    # Orders

    def create_order(self, order_data: Mapping[str, Any]) -> Dict:
        return self.request("/api/orders", "POST", body=dict(order_data))

    def get_orders(self) -> Dict:
        return self.request("/api/orders/user/my-orders")

    def get_order(self, order_id: str) -> Dict:
        return self.request(f"/api/orders/{order_id}")

    def cancel_order(self, order_id: str, reason: str = "") -> Dict:
        return self.request(f"/api/orders/{order_id}/cancel", "PUT", body={"reason": reason})

    def get_all_orders(self) -> Dict:
        return self.request("/api/orders")

    def update_order_status(self, order_id: str, status: str, cancellation_reason: str = "") -> Dict:
        return self.request(f"/api/orders/{order_id}/status", "PUT", body={
            "orderStatus": status, "cancellationReason": cancellation_reason
        })

    # Payments

    def create_payment_intent(self, order_id: str) -> Dict:
        logger.info(f"Creating payment intent for order: {order_id}")
        return self.request(f"/api/orders/{order_id}/pay", "POST")

    def get_payment_status(self, order_id: str) -> Dict:
        return self.request(f"/api/orders/{order_id}/payment-status")

    def confirm_payment(self, order_id: str, payment_method_id: str) -> Dict:
        return self.request(f"/api/orders/{order_id}/confirm-payment", "POST",
                            body={"paymentMethodId": payment_method_id})

    # Reviews

    def create_review(self, review: Mapping[str, Any]) -> Dict:
        return self.request("/api/reviews", "POST", body=dict(review))

    def get_product_reviews(self, product_id: str) -> Dict:
        return self.request(f"/api/reviews/product/{product_id}")

    def get_all_reviews(self) -> Dict:
        return self.request("/api/reviews")

    def update_review_approval(self, review_id: str, updates: Mapping[str, Any]) -> Dict:
        return self.request(f"/api/reviews/{review_id}/approval", "PUT", body=dict(updates))

    def delete_review(self, review_id: str) -> Dict:
        return self.request(f"/api/reviews/{review_id}", "DELETE")

    def mark_review_helpful(self, review_id: str) -> Dict:
        return self.request(f"/api/reviews/{review_id}/helpful", "PUT")

    # Users (admin)

    def get_all_users(self) -> Dict:
        return self.request("/api/users")

    def get_user(self, user_id: str) -> Dict:
        return self.request(f"/api/users/{user_id}")

    def delete_user(self, user_id: str) -> Dict:
        return self.request(f"/api/users/{user_id}", "DELETE")

    def health_check(self) -> Dict:
        return self.request("/api/health", skip_auth=True)
