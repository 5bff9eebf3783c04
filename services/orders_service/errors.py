"""Domain errors raised by the orders service.

Routers never build HTTPExceptions for domain failures; the app-level
handler maps ``status_code`` onto the response.
"""

from typing import Optional


class OrderServiceError(Exception):
    """Base exception for order, payment and fulfillment failures."""

    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(OrderServiceError):
    status_code = 400


class NotFoundError(OrderServiceError):
    status_code = 404


class AuthorizationError(OrderServiceError):
    status_code = 403


class InvalidStateError(OrderServiceError):
    """The order's current status does not allow the requested action."""

    status_code = 409


class PaymentProviderError(OrderServiceError):
    status_code = 502


class NoPaymentProviderError(OrderServiceError):
    status_code = 503
