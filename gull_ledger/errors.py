"""
Ledger error taxonomy.

Every error derives from LedgerError, which is itself a ValueError,
so callers that only care about "the request was rejected" can keep
catching ValueError. Parse and validation problems are normally
collected and returned as lists; the exception types exist for the
places where a single failure has to abort an operation.
"""

from decimal import Decimal


class LedgerError(ValueError):
    """Base class for every ledger failure."""


class ParseError(LedgerError):
    """A malformed or unusable numeric token."""

    def __init__(self, message: str, token: str | None = None):
        super().__init__(message)
        self.token = token


class NumberRangeError(ParseError):
    """
    A number that does not fit its category.

    The normalizer clamps the value to the category maximum and
    raises this error with the clamped form attached, so the caller
    can show what the value would have become.
    """

    def __init__(self, message: str, token: str, clamped: str):
        super().__init__(message, token)
        self.clamped = clamped


class ValidationError(LedgerError):
    """A request that cannot be processed as given."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class InsufficientBalanceError(LedgerError):

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient balance: required={required}, "
            f"available={available}, shortfall={self.shortfall}"
        )


class LimitExceededError(LedgerError):
    """A batch would push a number's cumulative total past its cap."""

    def __init__(
        self,
        number: str,
        side: str,
        cap: Decimal,
        current: Decimal,
        attempted: Decimal,
    ):
        self.number = number
        self.side = side
        self.cap = cap
        self.current = current
        self.attempted = attempted
        self.excess = current + attempted - cap
        super().__init__(
            f"Amount limit exceeded for {number} ({side}): "
            f"limit={cap}, current={current}, adding={attempted}, "
            f"over by {self.excess}"
        )


class PersistenceError(LedgerError):
    """
    Entry persistence failed.

    all_failed=True means nothing was written and the balance change
    was rolled back. Otherwise success_count entries were written and
    failures lists what went wrong with the rest.
    """

    def __init__(
        self,
        message: str,
        *,
        all_failed: bool,
        success_count: int = 0,
        failures: list[str] | None = None,
    ):
        super().__init__(message)
        self.all_failed = all_failed
        self.success_count = success_count
        self.failures = failures or []


class NotFoundError(LedgerError):
    """A referenced entry, user or history target does not exist."""


class MutationInFlightError(LedgerError):
    """A mutation was issued while another one (or a replay) was running."""


# --- Store errors ---
# Raised by LedgerStore implementations. The transaction service
# uses the concrete type to choose between rollback and the pending
# write cache.

class StoreError(LedgerError):
    """Base class for persistence backend failures."""


class EntryNotFoundError(StoreError, NotFoundError):
    pass


class ConstraintViolationError(StoreError):
    pass


class TransientStoreError(StoreError):
    """Network or availability failure; the write may succeed later."""
