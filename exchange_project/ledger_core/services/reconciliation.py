import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from django.db import IntegrityError, transaction
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from django.utils.dateparse import parse_date
from ..conf import ledger_setting
from ..exceptions import StateError, ValidationError
from ..models import CashBalance, Payment, Reconciliation
from ..money import ZERO, to_decimal
from .audit_helper import log_action
from .balance import read_balance
from .lookups import get_branch, get_currency

logger = logging.getLogger(__name__)


@dataclass
class ExpectedBalanceBreakdown:
    """What the system thinks a branch holds in one currency."""

    currency: str
    cash: Decimal = ZERO   # CashBalance
    bank: Decimal = ZERO   # completed non-cash payments

    @property
    def total(self):
        return self.cash + self.bank

    def as_dict(self):
        return {
            "currency": self.currency,
            "cash": str(self.cash),
            "bank": str(self.bank),
            "total": str(self.total),
        }


def _as_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    parsed = parse_date(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}", field="date")
    return parsed


def _clean_breakdown(raw):
    """{'usd': '10'} -> {'USD': Decimal('10')}; codes must be known currencies."""
    if raw in (None, ""):
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("currency_breakdown must be an object", field="currency_breakdown")
    cleaned = {}
    for code, amount in raw.items():
        currency = get_currency(code, field="currency_breakdown")
        cleaned[currency.code] = to_decimal(amount, field=f"currency_breakdown.{currency.code}")
    return cleaned


def is_breach(variance):
    threshold = Decimal(ledger_setting("VARIANCE_THRESHOLD"))
    return variance != ZERO and abs(variance) >= threshold


# ----------------------------
# Daily reconciliation
# ----------------------------
def create_reconciliation(
    company,
    branch,
    date,
    opening_balance,
    closing_balance,
    currency_breakdown=None,
    notes="",
    user=None,
    currency=None,
):
    """
    Record a physical cash count against the computed balance.
    A breach is flagged on the row and logged; it never blocks the insert.
    """
    date = _as_date(date)
    opening = to_decimal(opening_balance, field="opening_balance")
    closing = to_decimal(closing_balance, field="closing_balance")
    breakdown = _clean_breakdown(currency_breakdown)
    branch = get_branch(company, branch)
    currency = get_currency(currency) if currency else company.default_currency

    with transaction.atomic():
        duplicate = Reconciliation.objects.for_branch(company, branch).filter(
            date=date, currency=currency).exists()
        if duplicate:
            raise StateError(
                f"A {currency.code} reconciliation for {date} already exists", field="date")

        # straight from the row; the read cache may lag other processes
        expected = read_balance(company, branch, currency).balance
        variance = closing - expected
        breakdown_variance = {
            code: str(counted - read_balance(company, branch, code).balance)
            for code, counted in breakdown.items()
        }
        try:
            # savepoint: a concurrent insert loses on the unique constraint
            with transaction.atomic():
                recon = Reconciliation.objects.create(
                    company=company,
                    branch=branch,
                    date=date,
                    currency=currency,
                    opening_balance=opening,
                    closing_balance=closing,
                    expected_balance=expected,
                    variance=variance,
                    currency_breakdown={k: str(v) for k, v in breakdown.items()},
                    breakdown_variance=breakdown_variance,
                    is_breached=is_breach(variance),
                    notes=notes or "",
                    created_by=user if getattr(user, "pk", None) else None,
                )
        except IntegrityError:
            raise StateError(
                f"A {currency.code} reconciliation for {date} already exists", field="date")

        log_action(
            action="create_reconciliation",
            instance=recon,
            user=user,
            changes={
                "date": date.isoformat(),
                "currency": currency.code,
                "expected": expected,
                "closing": closing,
                "variance": variance,
                "is_breached": recon.is_breached,
            },
        )

    if recon.is_breached:
        logger.warning(
            "cash variance %s %s at %s on %s (expected %s, counted %s)",
            variance, currency.code, branch or "HQ", date, expected, closing,
        )
    return recon


def get_expected_balance(company, branch):
    """Cash from CashBalance plus non-cash completed payments, per currency."""
    branch = get_branch(company, branch)
    entries = {}

    for row in CashBalance.objects.for_branch(company, branch):
        entries.setdefault(row.currency_id, ExpectedBalanceBreakdown(row.currency_id)).cash = row.balance

    bank_totals = (
        Payment.objects.for_branch(company, branch)
        .completed()
        .exclude(payment_method="CASH")
        .values("currency_id")
        .annotate(total=Coalesce(Sum("amount"), Decimal("0")))
        .order_by("currency_id")
    )
    for item in bank_totals:
        code = item["currency_id"]
        entries.setdefault(code, ExpectedBalanceBreakdown(code)).bank = item["total"]

    return [entries[code] for code in sorted(entries)]


def get_variance_report(company, days=30):
    """Non-zero variances of the last `days` days, newest first."""
    since = timezone.localdate() - datetime.timedelta(days=days)
    return list(
        Reconciliation.objects.for_company(company)
        .filter(date__gte=since)
        .exclude(variance=0)
        .select_related("branch", "currency", "created_by")
        .order_by("-date", "-id")
    )


def reconciliation_history(company, branch=None, start=None, end=None):
    qs = Reconciliation.objects.for_company(company).select_related("branch", "created_by")
    if branch is not None:
        qs = qs.filter(branch=get_branch(company, branch))
    if start is not None:
        qs = qs.filter(date__gte=_as_date(start))
    if end is not None:
        qs = qs.filter(date__lte=_as_date(end))
    return list(qs.order_by("-date", "-id"))
