"""
Auth session management on top of the API gateway.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from storefront.api_client import ApiClient
from storefront.cart_service import CartService
from storefront.exceptions import ApiError, NetworkError, ValidationError
from storefront.models import AuthSession
from storefront.validators import validate_email, validate_name, validate_password, validate_phone

logger = logging.getLogger(__name__)


def _data(response: Any) -> Dict[str, Any]:
    data = response.get("data") if isinstance(response, dict) else None
    return data if isinstance(data, dict) else {}


class AuthService:
    """Holds the signed-in user; the token itself lives in the gateway"""

    def __init__(self, api: ApiClient, cart_service: CartService):
        self.api = api
        self.cart_service = cart_service
        self.user: Optional[Dict[str, Any]] = None

    @property
    def session(self) -> AuthSession:
        return AuthSession(token=self.api.token, user=self.user)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_admin(self) -> bool:
        return bool(self.user) and self.user.get("role") == "admin"

    def restore(self) -> Optional[Dict[str, Any]]:
        """
        Re-fetch the profile for a persisted token.

        A held token is only trusted once the profile fetch succeeds; any
        failure is treated as an expired session and clears it.
        """
        if not self.api.is_authenticated:
            self.user = None
            return None
        try:
            response = self.api.get_profile()
        except (ApiError, NetworkError) as e:
            logger.warning(f"Failed to fetch profile, clearing session: {e.message}")
            self.api.clear_token()
            self.user = None
            return None
        self.user = _data(response).get("user")
        return self.user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        if not validate_email(email):
            raise ValidationError("Please enter a valid email address", {"email": "Invalid email"})
        if not password:
            raise ValidationError("Password is required", {"password": "Password is required"})
        response = self.api.login(email, password)
        self.user = _data(response).get("user")
        return self.user or {}

    def register(self, name: str, email: str, phone: str, password: str) -> Dict[str, Any]:
        """Register, then sign in with the same credentials"""
        errors = {}
        name_check = validate_name(name)
        if not name_check.is_valid:
            errors["name"] = name_check.message
        if not validate_email(email):
            errors["email"] = "Invalid email"
        if not validate_phone(phone):
            errors["phone"] = "Invalid phone number"
        password_check = validate_password(password)
        if not password_check.is_valid:
            errors["password"] = password_check.message
        if errors:
            raise ValidationError("Please fix the errors", errors)

        self.api.register(name, email, phone, password)
        return self.login(email, password)

    def logout(self) -> None:
        self.api.logout()
        self.cart_service.reload()
        self.user = None

    def update_profile(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        response = self.api.update_profile(data)
        self.user = {**(self.user or {}), **(_data(response).get("user") or {})}
        return self.user

    def _apply_addresses(self, response: Any) -> Dict[str, Any]:
        data = _data(response)
        if self.user is not None and "addresses" in data:
            self.user = {**self.user, "addresses": data["addresses"]}
        return data

    def add_address(self, address: Mapping[str, Any]) -> Dict[str, Any]:
        return self._apply_addresses(self.api.add_address(address))

    def update_address(self, address_id: str, address: Mapping[str, Any]) -> Dict[str, Any]:
        return self._apply_addresses(self.api.update_address(address_id, address))

    def delete_address(self, address_id: str) -> Dict[str, Any]:
        return self._apply_addresses(self.api.delete_address(address_id))

    def change_password(self, current_password: str, new_password: str) -> Dict[str, Any]:
        check = validate_password(new_password)
        if not check.is_valid:
            raise ValidationError(check.message, {"newPassword": check.message})
        return self.api.change_password(current_password, new_password)

    def request_password_reset(self, email: str) -> Dict[str, Any]:
        if not validate_email(email):
            raise ValidationError("Please enter a valid email address", {"email": "Invalid email"})
        return self.api.request_password_reset(email)

    def reset_password(self, token: str, new_password: str) -> Dict[str, Any]:
        check = validate_password(new_password)
        if not check.is_valid:
            raise ValidationError(check.message, {"newPassword": check.message})
        return self.api.reset_password(token, new_password)

    def verify_reset_token(self, token: str) -> Dict[str, Any]:
        return self.api.verify_reset_token(token)

    def refresh_token(self) -> Dict[str, Any]:
        return self.api.refresh_token()
