"""
Exception classes for the page risk engine.

All exceptions inherit from PageRiskError and carry a machine-readable code,
a human-readable message and optional structured details.
"""

from typing import Optional


class PageRiskError(Exception):
    """Base exception for all page risk engine errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(PageRiskError):
    """Raised when a caller supplies a malformed or missing required field."""

    pass


class StoreUnavailableError(PageRiskError):
    """Raised when the key-value store cannot be read or written."""

    pass


class TamperingError(StoreUnavailableError):
    """Raised when HMAC validation of persisted data fails."""

    pass


class CapacityInvariantViolation(PageRiskError):
    """Raised in strict mode when a ledger kind exceeds its capacity."""

    pass


class CatalogError(PageRiskError):
    """Raised when rule catalog data is invalid (bad regex, weight, category)."""

    pass


class PageSourceError(PageRiskError):
    """Raised when a page cannot be fetched."""

    pass


class CommandError(PageRiskError):
    """Raised when a command cannot be parsed or dispatched."""

    pass


class NotificationError(PageRiskError):
    """Raised when notification delivery is misconfigured."""

    pass
