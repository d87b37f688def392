"""
Batch drawdown: one incoming amount spread over several open transactions.

FIFO fills the oldest transactions first; PROPORTIONAL splits the amount
by each transaction's remaining balance. Allocations are rounded down to
the payment currency's minor unit, so a batch never overpays a
transaction and any rounding residue stays unallocated.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import List, Optional
from django.db import transaction
from django.utils import timezone
from ..conf import ledger_setting
from ..exceptions import NotFoundError, StateError, ValidationError
from ..models import Payment, Transaction
from ..money import ZERO, minor_unit, quantize_money, to_decimal, tolerance_band
from .audit_helper import log_action
from .locking import lock_rows, retry_on_conflict
from .lookups import get_currency
from .payment import add_payment, resolve_rate

logger = logging.getLogger(__name__)

STRATEGIES = ("FIFO", "PROPORTIONAL")


@dataclass
class BatchAllocation:
    transaction: Transaction
    remaining_balance: Decimal  # before the batch, transaction currency
    amount: Decimal             # payment currency
    amount_in_base: Decimal     # transaction currency
    is_full_payment: bool

    def as_dict(self):
        return {
            "transaction_id": self.transaction.pk,
            "reference": self.transaction.reference,
            "customer_ref": self.transaction.customer_ref,
            "currency": self.transaction.received_currency_id,
            "remaining_balance": str(self.remaining_balance),
            "amount": str(self.amount),
            "amount_in_base": str(self.amount_in_base),
            "is_full_payment": self.is_full_payment,
        }


@dataclass
class BatchPaymentPreview:
    strategy: str
    currency: str
    total_amount: Decimal
    allocations: List[BatchAllocation] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)

    @property
    def total_allocated(self):
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def unallocated(self):
        return self.total_amount - self.total_allocated

    @property
    def transactions_paid(self):
        return sum(1 for a in self.allocations if a.amount > ZERO)

    def as_dict(self):
        return {
            "strategy": self.strategy,
            "currency": self.currency,
            "total_amount": str(self.total_amount),
            "total_allocated": str(self.total_allocated),
            "unallocated": str(self.unallocated),
            "transactions_paid": self.transactions_paid,
            "allocations": [a.as_dict() for a in self.allocations],
            "skipped_transaction_ids": self.skipped,
        }


@dataclass
class BatchPaymentResult:
    preview: BatchPaymentPreview
    payments: List[Payment] = field(default_factory=list)
    processed_at: Optional[datetime] = None

    @property
    def payments_created(self):
        return len(self.payments)

    @property
    def total_paid(self):
        return sum((p.amount for p in self.payments), ZERO)

    def as_dict(self):
        return {
            **self.preview.as_dict(),
            "payment_ids": [p.pk for p in self.payments],
            "payments_created": self.payments_created,
            "total_paid": str(self.total_paid),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


# ----------------------------
# Helpers
# ----------------------------
def _is_pending(tx):
    return tx.allow_partial_payment and tx.payment_status in ("OPEN", "PARTIAL")


def _transaction_ids(value):
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError("transaction_ids must be a non-empty list", field="transaction_ids")
    try:
        return sorted({int(v) for v in value})
    except (TypeError, ValueError):
        raise ValidationError("transaction_ids must be integers", field="transaction_ids")


def _load(company, ids, lock=False):
    qs = Transaction.objects.for_company(company).select_related("received_currency").filter(pk__in=ids)
    rows = lock_rows(qs) if lock else list(qs)
    missing = set(ids) - {tx.pk for tx in rows}
    if missing:
        raise NotFoundError(
            f"Transaction {min(missing)} does not exist", field="transaction_ids")
    return rows


def _allocate(transactions, total, rate, unit, strategy):
    """Amount (payment currency) per transaction, never above what it still owes."""
    capacity = [
        max((tx.remaining_balance / rate).quantize(unit, rounding=ROUND_DOWN), ZERO)
        for tx in transactions
    ]
    if strategy == "FIFO":
        left, amounts = total, []
        for cap in capacity:
            amount = min(left, cap)
            amounts.append(amount)
            left -= amount
        return amounts

    owed = sum(capacity, ZERO)
    if owed == ZERO:
        return [ZERO] * len(transactions)
    return [
        min((total * cap / owed).quantize(unit, rounding=ROUND_DOWN), cap)
        for cap in capacity
    ]


def _plan(company, ids, total, currency, exchange_rate, strategy, lock=False):
    rows = _load(company, ids, lock=lock)
    pending = sorted((tx for tx in rows if _is_pending(tx)), key=lambda tx: (tx.created_at, tx.pk))
    if not pending:
        raise StateError("No transaction in the batch accepts partial payments", field="transaction_ids")
    base_codes = {tx.received_currency_id for tx in pending}
    if len(base_codes) > 1:
        raise ValidationError(
            f"Batch transactions must share one currency, got {', '.join(sorted(base_codes))}",
            field="transaction_ids",
        )

    rate = resolve_rate(pending[0], currency, exchange_rate)
    amounts = _allocate(pending, total, rate, minor_unit(currency.decimal_places), strategy)

    preview = BatchPaymentPreview(
        strategy=strategy,
        currency=currency.code,
        total_amount=total,
        skipped=[tx.pk for tx in rows if not _is_pending(tx)],
    )
    percent = ledger_setting("TOLERANCE_PERCENT")
    for tx, amount in zip(pending, amounts):
        base_places = tx.received_currency.decimal_places
        in_base = quantize_money(amount * rate, base_places)
        band = tolerance_band(tx.total_received, base_places, percent)
        preview.allocations.append(BatchAllocation(
            transaction=tx,
            remaining_balance=tx.remaining_balance,
            amount=amount,
            amount_in_base=in_base,
            is_full_payment=amount > ZERO and abs(tx.remaining_balance - in_base) <= band,
        ))
    return preview


def _clean_request(total_amount, currency, strategy):
    if strategy not in STRATEGIES:
        raise ValidationError(f"Unknown batch strategy: {strategy}", field="strategy")
    total = to_decimal(total_amount, field="total_amount")
    if total <= ZERO:
        raise ValidationError("total_amount must be positive", field="total_amount")
    return total, get_currency(currency)


# ----------------------------
# Public API
# ----------------------------
def get_pending_transactions(company, currency=None):
    """Transactions a batch can pay into, oldest first."""
    qs = (
        Transaction.objects.for_company(company)
        .filter(allow_partial_payment=True, payment_status__in=("OPEN", "PARTIAL"))
        .select_related("received_currency")
    )
    if currency is not None:
        qs = qs.filter(received_currency=get_currency(currency))
    return list(qs.order_by("created_at", "id"))


def preview_batch_payment(company, transaction_ids, total_amount, currency,
                          exchange_rate=None, strategy="FIFO"):
    """Read-only: how process_batch_payment would split the amount."""
    total, currency = _clean_request(total_amount, currency, strategy)
    ids = _transaction_ids(transaction_ids)
    return _plan(company, ids, total, currency, exchange_rate, strategy)


@retry_on_conflict
def process_batch_payment(
    company,
    transaction_ids,
    total_amount,
    currency,
    exchange_rate=None,
    method="CASH",
    strategy="FIFO",
    notes="",
    details=None,
    user=None,
    branch=None,
):
    """
    Record one payment per allocation, all or nothing.
    Every transaction in the batch stays locked (ascending pk) from
    planning to the last payment.
    """
    total, currency = _clean_request(total_amount, currency, strategy)
    ids = _transaction_ids(transaction_ids)
    note = f"Batch payment: {notes}" if notes else "Batch payment"

    with transaction.atomic():
        preview = _plan(company, ids, total, currency, exchange_rate, strategy, lock=True)
        result = BatchPaymentResult(preview=preview, processed_at=timezone.now())
        for allocation in preview.allocations:
            if allocation.amount <= ZERO:
                continue
            result.payments.append(add_payment(
                allocation.transaction.pk,
                allocation.amount,
                currency,
                exchange_rate=exchange_rate,
                method=method,
                notes=note,
                details=details,
                user=user,
                company=company,
                branch=branch,
            ))
        if not result.payments:
            raise StateError("Nothing left to pay on the selected transactions",
                             field="transaction_ids")
        log_action(
            action="batch_payment",
            instance=company,
            user=user,
            company=company,
            changes={
                "strategy": strategy,
                "currency": currency.code,
                "total_amount": total,
                "total_paid": result.total_paid,
                "payment_ids": [p.pk for p in result.payments],
            },
        )

    logger.info(
        "batch %s: %s %s over %s transactions (%s unallocated)",
        strategy, result.total_paid, currency.code, result.payments_created,
        preview.unallocated,
    )
    return result
