"""Error taxonomy of the sale transaction engine."""


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidCart(SaleError):
    """Malformed cart payload (rejected before any database access)."""


class Unauthorized(SaleError):
    """No authenticated operator for the sale."""


class ProductNotFound(SaleError):
    pass


class ProductInactive(SaleError):
    pass


class InsufficientStock(SaleError):
    """UNIT product: requested quantity exceeds on-hand quantity."""


class InsufficientVolume(SaleError):
    """FRACTIONED product: barrel cannot supply the requested volume."""


class TransactionFailed(SaleError):
    """The write phase failed and was rolled back."""


class TicketError(SaleError):
    """Ticket missing or not in a redeemable state."""
