"""Error taxonomy for the marketplace API.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the API layer answers with.
"""


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "Server Error"):
        self.message = message
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    kind = "not_found"
    status_code = 404


class InvalidRequestError(MarketplaceError):
    """Raised for malformed input or a request the current state does not allow."""

    kind = "invalid_request"
    status_code = 400


class InsufficientStockError(InvalidRequestError):
    """Raised when a requested quantity exceeds the product's stock."""

    def __init__(self, product_id: str, title: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for product: {title}")


class InvalidTransitionError(InvalidRequestError):
    """Raised when an order status change is not in the transition table."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from '{current}' to '{requested}'")


class UnauthorizedError(MarketplaceError):
    kind = "unauthorized"
    status_code = 401


class ForbiddenError(MarketplaceError):
    kind = "forbidden"
    status_code = 403


class ConflictError(MarketplaceError):
    """Raised when a conditional write loses against a concurrent change."""

    kind = "conflict"
    status_code = 409


class OrderTimeoutError(MarketplaceError):
    kind = "timeout"
    status_code = 504

    def __init__(self, message: str = "Order processing timed out"):
        super().__init__(message)
