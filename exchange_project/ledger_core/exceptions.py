"""
Error taxonomy for the ledger engine.

Every error carries a machine-readable ``kind``, the offending ``field``
(when there is one) and an HTTP ``status`` the views use when rendering it.
Only ConcurrencyConflict is retryable.
"""
from contextlib import contextmanager

from django.core.exceptions import NON_FIELD_ERRORS
from django.core.exceptions import ValidationError as DjangoValidationError


class LedgerError(Exception):
    """Base class for every error raised by ledger services."""

    kind = "ledger_error"
    status = 400
    retryable = False

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field

    def as_dict(self):
        return {"kind": self.kind, "field": self.field, "message": self.message}


class ValidationError(LedgerError):
    """Malformed input, rejected before any write."""

    kind = "validation_error"


class OverpaymentError(LedgerError):
    """A payment would push total paid past total received beyond tolerance."""

    kind = "overpayment"
    status = 422

    def __init__(self, message, field="amount", remaining=None, currency=None):
        super().__init__(message, field=field)
        self.remaining = remaining
        self.currency = currency

    def as_dict(self):
        data = super().as_dict()
        if self.remaining is not None:
            data["remaining"] = str(self.remaining)
            data["currency"] = self.currency
        return data


class StateError(LedgerError):
    """Operation is not valid for the record's current status."""

    kind = "state_error"
    status = 409


class ConcurrencyConflict(LedgerError):
    """Lock or version contention. Safe to retry."""

    kind = "concurrency_conflict"
    status = 409
    retryable = True


class NotFoundError(LedgerError):
    """Referenced payment / transaction / obligation / balance does not exist."""

    kind = "not_found"
    status = 404


@contextmanager
def model_errors():
    """
    Re-raise Django model validation (full_clean) as a ledger ValidationError.
    The first offending field is reported; "__all__" maps to no field.
    """
    try:
        yield
    except DjangoValidationError as exc:
        if hasattr(exc, "error_dict"):
            field, messages = next(iter(exc.message_dict.items()))
            message = f"{field}: {messages[0]}"
            field = None if field == NON_FIELD_ERRORS else field
        else:
            field, message = None, exc.messages[0]
        raise ValidationError(message, field=field) from exc
