import logging
from decimal import Decimal
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import F, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from ..exceptions import ConcurrencyConflict, ValidationError
from ..models import Adjustment, CashBalance, Payment
from ..money import ZERO, to_decimal
from . import cache
from .audit_helper import log_action
from .locking import retry_on_conflict
from .lookups import get_branch, get_currency

logger = logging.getLogger(__name__)


# ----------------------------
# Pure fold over history
# ----------------------------
def compute_fold(company, branch, currency):
    """
    (auto, manual) for one (branch, currency):
      auto   = Σ amount of COMPLETED cash payments in that currency at that branch
      manual = Σ adjustment deltas
    No currency conversion happens here.
    """
    auto = (
        Payment.objects.for_branch(company, branch)
        .completed().cash()
        .filter(currency=currency)
        .aggregate(total=Coalesce(Sum("amount"), Decimal("0")))["total"]
    )
    adjustments = Adjustment.objects.filter(
        company=company, cash_balance__currency=currency)
    if branch is None:
        adjustments = adjustments.filter(cash_balance__branch__isnull=True)
    else:
        adjustments = adjustments.filter(cash_balance__branch=branch)
    manual = adjustments.aggregate(
        total=Coalesce(Sum("delta"), Decimal("0")))["total"]
    return auto, manual


def _locked_row(company, branch, currency):
    """Fetch-or-create the CashBalance row and hold its lock."""
    qs = CashBalance.objects.for_branch(company, branch).filter(currency=currency)
    try:
        return qs.select_for_update().get()
    except CashBalance.DoesNotExist:
        pass
    except OperationalError as exc:
        raise ConcurrencyConflict(
            f"Cash balance {currency.code} is locked by another operation") from exc
    try:
        # savepoint: a concurrent creator wins the unique constraint
        with transaction.atomic():
            return CashBalance.objects.create(
                company=company, branch=branch, currency=currency)
    except IntegrityError:
        return qs.select_for_update().get()


def _write(row, auto, manual, **extra):
    """
    Persist new totals under the optimistic version guard.
    A writer holding a stale version gets ConcurrencyConflict.
    """
    now = timezone.now()
    updated = CashBalance.objects.filter(pk=row.pk, version=row.version).update(
        auto_calculated_balance=auto,
        manual_adjustment=manual,
        balance=auto + manual,
        version=F("version") + 1,
        last_updated=now,
        **extra,
    )
    if not updated:
        raise ConcurrencyConflict(
            "Cash balance was updated concurrently; please retry", field="version")
    cache.invalidate(row.company_id, row.branch_id, row.currency_id)
    row.refresh_from_db()
    return row


# ----------------------------
# Reads
# ----------------------------
def get_balance(company, branch, currency):
    """
    Current CashBalance for (branch, currency), via the read-through cache.
    A missing row is created from a full fold.
    """
    currency = get_currency(currency)
    branch = get_branch(company, branch)
    cached = cache.get_cached(company.pk, branch.pk if branch else None, currency.code)
    if cached is not None:
        return cached
    row = (
        CashBalance.objects.for_branch(company, branch)
        .filter(currency=currency).first()
    )
    if row is None:
        row = recompute_balance(company, branch, currency)
    cache.set_cached(row)
    return row


def read_balance(company, branch, currency):
    """
    Uncached read for write paths: the stored row, locked until the
    caller's transaction ends. A missing row is created from a full fold.
    """
    currency = get_currency(currency)
    branch = get_branch(company, branch)
    with transaction.atomic():
        try:
            row = (
                CashBalance.objects.for_branch(company, branch)
                .filter(currency=currency).select_for_update().first()
            )
        except OperationalError as exc:
            raise ConcurrencyConflict(
                f"Cash balance {currency.code} is locked by another operation") from exc
        if row is None:
            row = recompute_balance(company, branch, currency)
    return row


def list_balances(company, branch=None):
    qs = CashBalance.objects.for_company(company).select_related("currency", "branch")
    if branch is not None:
        qs = qs.filter(branch=get_branch(company, branch))
    return list(qs.order_by("branch_id", "currency_id"))


def adjustment_history(company, branch=None, currency=None):
    qs = Adjustment.objects.for_company(company).select_related(
        "cash_balance", "performed_by")
    if branch is not None:
        qs = qs.filter(cash_balance__branch=get_branch(company, branch))
    if currency is not None:
        qs = qs.filter(cash_balance__currency=get_currency(currency))
    return list(qs)


# ----------------------------
# Writes
# ----------------------------
@retry_on_conflict
def recompute_balance(company, branch, currency, user=None):
    """
    Rebuild a balance row from scratch. Running it twice in a row
    leaves the row unchanged (the version only moves on a real change).
    """
    currency = get_currency(currency)
    branch = get_branch(company, branch)
    with transaction.atomic():
        row = _locked_row(company, branch, currency)
        auto, manual = compute_fold(company, branch, currency)
        if row.auto_calculated_balance == auto and row.manual_adjustment == manual \
                and row.balance == auto + manual:
            CashBalance.objects.filter(pk=row.pk).update(last_calculated_at=timezone.now())
            row.refresh_from_db()
            return row

        drift = (auto + manual) - row.balance
        if row.version:
            logger.warning(
                "balance drift on %s: stored %s, recomputed %s",
                row, row.balance, auto + manual,
            )
        row = _write(row, auto, manual, last_calculated_at=timezone.now())
        log_action(
            action="recompute_balance",
            instance=row,
            user=user,
            changes={"balance": row.balance, "drift": drift},
        )
        return row


@retry_on_conflict
def apply_adjustment(company, branch, currency, delta, reason, user=None):
    """
    Record a manual correction and fold it into the balance.
    Rejected before any write when the delta is zero or not a finite decimal,
    or when the reason is blank.
    """
    delta = to_decimal(delta, field="delta")
    if delta == ZERO:
        raise ValidationError("Adjustment delta must not be zero", field="delta")
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required for manual adjustments", field="reason")
    currency = get_currency(currency)
    branch = get_branch(company, branch)

    with transaction.atomic():
        row = _locked_row(company, branch, currency)
        before = row.balance
        adjustment = Adjustment.objects.create(
            company=company,
            cash_balance=row,
            delta=delta,
            reason=str(reason).strip(),
            performed_by=user if getattr(user, "pk", None) else None,
            balance_before=before,
            balance_after=before + delta,
        )
        row = _write(
            row,
            row.auto_calculated_balance,
            row.manual_adjustment + delta,
            last_adjusted_at=timezone.now(),
        )
        log_action(
            action="apply_adjustment",
            instance=adjustment,
            user=user,
            changes={
                "currency": currency.code,
                "delta": delta,
                "balance_before": before,
                "balance_after": row.balance,
            },
        )
    logger.info("adjustment %s %s on %s by %s", delta, currency.code, branch or "HQ", user)
    return adjustment


def apply_payment_delta(company, branch, currency, delta):
    """
    Incremental update from the payment tracker (cash payments only).
    Runs inside the caller's atomic block and takes the same row lock
    as adjustments.
    """
    if delta == ZERO:
        return None
    with transaction.atomic():
        row = _locked_row(company, branch, currency)
        return _write(row, row.auto_calculated_balance + delta, row.manual_adjustment)


def refresh_all_balances(company, user=None):
    """
    Recompute every existing balance row of a tenant.
    Returns [(balance, drift)] for rows whose stored value was wrong.
    """
    drifted = []
    for row in CashBalance.objects.for_company(company).select_related("currency", "branch"):
        before = row.balance
        fresh = recompute_balance(company, row.branch, row.currency, user=user)
        if fresh.balance != before:
            drifted.append((fresh, fresh.balance - before))
    return drifted
