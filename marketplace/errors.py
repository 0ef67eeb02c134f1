"""Error taxonomy shared by the engines and the surrounding application."""
from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for all service errors."""
    retryable: bool = False


class ValidationError(MarketplaceError):
    """Raised for malformed or missing required input.

    ``errors`` maps a field name to a human-readable message.
    """

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = dict(errors or {})

    def __str__(self) -> str:
        base = super().__str__()
        if not self.errors:
            return base
        details = "; ".join(f"{field}: {msg}" for field, msg in sorted(self.errors.items()))
        return f"{base} ({details})"


class DataUnavailableError(MarketplaceError):
    """Raised when the candidate or signal source cannot be read."""
    retryable = True


class MatchPersistenceError(DataUnavailableError):
    """Raised when a matching run could not be written atomically.

    The intake is left in PENDING state and the run can be retried.
    """


class IntakeNotFoundError(MarketplaceError):
    """Raised when an intake id does not exist."""


class IntakeStateError(MarketplaceError):
    """Raised when an intake is not in a state that allows the operation."""


class ProductNotFoundError(MarketplaceError):
    """Raised when a product does not exist or is not live."""
