import functools
import logging
import random
import time
from django.db import OperationalError, transaction
from ..conf import ledger_setting
from ..exceptions import ConcurrencyConflict, NotFoundError

logger = logging.getLogger(__name__)


# ----------------------------
# Row locks
# ----------------------------
def lock_one(queryset, pk, label):
    """
    SELECT ... FOR UPDATE a single row.
    Must run inside transaction.atomic().
    """
    try:
        return queryset.select_for_update(of=("self",)).get(pk=pk)
    except (queryset.model.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"{label} {pk} does not exist", field=f"{label.lower()}_id")
    except OperationalError as exc:
        # lock_timeout / deadlock on PostgreSQL
        raise ConcurrencyConflict(f"{label} {pk} is locked by another operation") from exc


def lock_rows(queryset):
    """
    Lock every row of `queryset` in ascending primary-key order.
    A fixed order keeps two writers from deadlocking on the same pair.
    """
    try:
        return list(queryset.select_for_update(of=("self",)).order_by("pk"))
    except OperationalError as exc:
        raise ConcurrencyConflict(
            f"{queryset.model.__name__} rows are locked by another operation") from exc


# ----------------------------
# Retry policy
# ----------------------------
def retry_on_conflict(func):
    """
    Re-run `func` when it raises ConcurrencyConflict.
    Each attempt gets a fresh atomic block, so a retry is only possible
    when no outer transaction is open.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        retries = ledger_setting("CONFLICT_RETRIES")
        backoff = ledger_setting("CONFLICT_BACKOFF_SECONDS")
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except ConcurrencyConflict:
                if attempt >= retries or transaction.get_connection().in_atomic_block:
                    raise
                attempt += 1
                delay = backoff * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
                logger.warning(
                    "%s hit a lock conflict, retry %s/%s in %.3fs",
                    func.__name__, attempt, retries, delay,
                )
                time.sleep(delay)

    return wrapper
