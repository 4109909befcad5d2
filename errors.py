"""Business errors raised by the storefront core."""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class InvalidRequest(StorefrontError):
    """Raised for malformed or empty input."""

    pass


class NotFound(StorefrontError):
    """Raised when a referenced product or order doesn't exist."""

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class InsufficientStock(StorefrontError):
    """Raised when a requested quantity exceeds stock at commit time."""

    def __init__(self, product_id: str, requested: int, available: Optional[int] = None, name: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        label = name or product_id
        msg = f"Insufficient stock for product: {label} (requested {requested}"
        if available is not None:
            msg += f", available {available}"
        super().__init__(msg + ")")


class InvalidTransition(StorefrontError):
    """Raised when an order status change is not permitted."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from {current} to {target}")


class Unauthorized(StorefrontError):
    """Raised when the caller is unidentified or the admin key is wrong."""

    pass


class Forbidden(StorefrontError):
    """Raised when the caller may not access the requested resource."""

    pass
