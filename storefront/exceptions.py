"""
Custom exceptions for the storefront client.

Every error carries a human-readable ``message`` so the UI layer can display
it without knowing which subsystem raised it.
"""
from typing import Any, Dict, Optional


class StorefrontException(Exception):
    """Base exception for storefront operations"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NetworkError(StorefrontException):
    """Raised when the remote API cannot be reached at all"""

    def __init__(self, message: str = "Could not reach server. Please check your connection."):
        super().__init__(message)


class ApiError(StorefrontException):
    """Raised when the remote API answers with a non-success status"""

    def __init__(self, message: str, status_code: int, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class ValidationError(StorefrontException):
    """Raised when client-side form or cart checks fail"""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        self.errors = errors or {}
        super().__init__(message)


class PaymentError(StorefrontException):
    """Raised when the payment processor reports a failure"""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class StaleStateError(StorefrontException):
    """Raised when cart items are no longer purchasable as held"""

    def __init__(self, result):
        self.result = result
        super().__init__(result.message)


class StorageConnectionError(StorefrontException):
    """Raised when the storage backend fails"""
    pass
