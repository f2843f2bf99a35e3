"""
Custom exceptions for the storefront client layer.
"""
from typing import Dict, Optional


class StorefrontError(Exception):
    """Base exception for storefront operations"""
    pass


class ValidationError(StorefrontError):
    """Raised when local input validation fails"""
    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        self.message = message
        self.field_errors = field_errors or {}
        super().__init__(message)


class TransitionNotAllowedError(StorefrontError):
    """Raised when an order transition fails its guard"""
    def __init__(self, order_id: str, transition: str, reason: str):
        self.order_id = order_id
        self.transition = transition
        self.reason = reason
        super().__init__(f"Cannot {transition} order {order_id}: {reason}")


class StorageConnectionError(StorefrontError):
    """Raised when durable storage cannot be reached"""
    pass


class ApiError(StorefrontError):
    """
    Normalized failure from the remote backend.

    Carries a human-readable message, the HTTP status (None for transport
    failures) and an optional per-field error map.
    """
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        field_errors: Optional[Dict[str, str]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.field_errors = field_errors or {}
        super().__init__(message)


class SessionExpiredError(ApiError):
    """Raised when the backend rejects the session credentials"""
    def __init__(self, message: str = "Please log in to continue."):
        super().__init__(message, status_code=401)


class NetworkError(ApiError):
    """Raised on timeouts and transport failures"""
    def __init__(
        self,
        message: str = "Unable to reach the server. Please check your connection and try again."
    ):
        super().__init__(message, status_code=None)
