"""Error taxonomy for the order and checkout core.

Services raise these exceptions when a business rule is violated. The API
layer (views) catches ``AppError`` and translates it into an HTTP response
using the ``status_code`` and ``code`` carried by each subclass, so callers
can always tell Forbidden, NotFound and Validation failures apart.
"""


class AppError(Exception):
    """Base class for errors that carry an HTTP status and a short code.

    Attributes:
        message: Human readable message, safe to show to end users.
        code: Stable machine readable error code.
        status_code: HTTP status the API layer answers with.
    """

    code = "APP_ERROR"
    status_code = 500

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppError):
    """A tenant, product batch or order does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ForbiddenError(AppError):
    """Cross-tenant product reference or a non-owner status change."""

    code = "FORBIDDEN"
    status_code = 403


class ValidationError(AppError):
    """User-correctable business rule violation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds the stock available for a product or size."""

    def __init__(self, label: str, available: int):
        super().__init__(f"Insufficient stock for {label}. Available: {available}")
        self.label = label
        self.available = available


class GatewayError(AppError):
    """The payment provider rejected or failed the request."""

    code = "MP_ERROR"
    status_code = 502


class InternalError(AppError):
    """Unexpected repository failure; not actionable by the user."""

    code = "INTERNAL_ERROR"
    status_code = 500


class PaymentProviderError(Exception):
    """Raised by payment provider adapters; wrapped into ``GatewayError``."""
