"""Typed circulation errors.

Components raise these; :class:`circulation.library.Library` turns them into
failed :class:`circulation.outcome.Outcome` values so nothing crosses the
public boundary as a bare exception. ``code`` is stable and safe to show to
callers or map onto transport status codes.
"""


class CirculationError(Exception):
    """Base class for every error the circulation core reports."""

    code = "CirculationError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(CirculationError):
    code = "NotFound"


class OutOfStock(CirculationError):
    code = "OutOfStock"


class BorrowLimitExceeded(CirculationError):
    code = "BorrowLimitExceeded"


class AlreadyBorrowed(CirculationError):
    code = "AlreadyBorrowed"


class AlreadyReturned(CirculationError):
    code = "AlreadyReturned"


class DuplicateReservation(CirculationError):
    code = "DuplicateReservation"


class ItemAvailableNoReservationNeeded(CirculationError):
    code = "ItemAvailableNoReservationNeeded"


class RenewalBlocked(CirculationError):
    code = "RenewalBlocked"


class ItemHidden(CirculationError):
    code = "ItemHidden"


class InvalidTransition(CirculationError):
    code = "InvalidTransition"


class InvalidArgument(CirculationError):
    code = "InvalidArgument"


class InvariantViolation(CirculationError):
    """Bookkeeping defect: the ledger refused a change that would corrupt counts."""

    code = "InvariantViolation"


class OverRelease(InvariantViolation):
    code = "OverRelease"


class StorageError(CirculationError):
    code = "StorageError"


# Errors that signal a bug rather than a rejected request.
INTERNAL_ERRORS = (InvariantViolation, StorageError)
