import logging
from decimal import Decimal
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from ..conf import ledger_setting
from ..exceptions import (NotFoundError, OverpaymentError, StateError, ValidationError,
                          model_errors)
from ..models import Payment, PaymentEdit, Transaction, TransactionEdit
from ..money import ZERO, quantize_money, to_decimal, tolerance_band
from .audit_helper import log_action
from .balance import apply_payment_delta
from .locking import lock_one, retry_on_conflict
from .lookups import bounded_text, get_branch, get_currency
from .payment_details import parse_details

logger = logging.getLogger(__name__)

ONE = Decimal("1")


# ----------------------------
# Helpers
# ----------------------------
def _transactions(company):
    qs = Transaction.objects.select_related("received_currency")
    return qs.for_company(company) if company is not None else qs


def _payments(company):
    qs = Payment.objects.select_related("currency")
    return qs.for_company(company) if company is not None else qs


def _require_reason(reason):
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required", field="reason")
    return str(reason).strip()


def _band(tx):
    return tolerance_band(
        tx.total_received,
        tx.received_currency.decimal_places,
        ledger_setting("TOLERANCE_PERCENT"),
    )


def resolve_rate(tx, currency, exchange_rate):
    """
    Rate converting `currency` into the transaction's received currency.
    Same-currency payments always use 1; cross-currency ones must say.
    """
    if currency.code == tx.received_currency_id:
        if exchange_rate in (None, ""):
            return ONE
        rate = to_decimal(exchange_rate, field="exchange_rate", places=8)
        if rate != ONE:
            raise ValidationError(
                "Payments in the transaction currency use an exchange rate of 1",
                field="exchange_rate",
            )
        return ONE
    if exchange_rate in (None, ""):
        raise ValidationError(
            f"An exchange rate {currency.code}->{tx.received_currency_id} is required",
            field="exchange_rate",
        )
    rate = to_decimal(exchange_rate, field="exchange_rate", places=8)
    if rate <= ZERO:
        raise ValidationError("exchange_rate must be positive", field="exchange_rate")
    return rate


def _positive_amount(amount):
    amount = to_decimal(amount, field="amount")
    if amount <= ZERO:
        raise ValidationError("amount must be positive", field="amount")
    return amount


def _active_total(tx, exclude=None):
    qs = tx.payments.completed()
    if exclude is not None:
        qs = qs.exclude(pk=exclude.pk)
    return qs.aggregate(total=Coalesce(Sum("amount_in_base"), Decimal("0")))["total"]


def _check_overpayment(tx, new_total):
    band = _band(tx)
    if new_total > tx.total_received + band:
        remaining = tx.total_received - _active_total(tx)
        raise OverpaymentError(
            f"Payment exceeds remaining balance {remaining} {tx.received_currency_id}",
            remaining=remaining,
            currency=tx.received_currency_id,
        )


def _record_status(tx, previous, user, reason=""):
    if previous == tx.payment_status:
        return
    TransactionEdit.objects.create(
        company=tx.company,
        transaction=tx,
        previous_status=previous,
        new_status=tx.payment_status,
        reason=reason,
        performed_by=user if getattr(user, "pk", None) else None,
    )


def _recompute_totals(tx, user=None):
    """
    Re-derive total_paid / remaining_balance from COMPLETED payments.
    Open transactions follow the payments (PARTIAL when any is active,
    OPEN when none); terminal ones keep their status.
    """
    total = _active_total(tx)
    tx.total_paid = total
    tx.remaining_balance = tx.total_received - total

    previous = tx.payment_status
    if not tx.is_terminal:
        has_active = tx.payments.completed().exists()
        tx.transition_to("PARTIAL" if has_active else "OPEN")
    tx.save(update_fields=["total_paid", "remaining_balance", "payment_status"])
    _record_status(tx, previous, user)
    return tx


def _cash_delta(payment, delta):
    if payment.payment_method == "CASH":
        apply_payment_delta(payment.company, payment.branch, payment.currency, delta)


def _lock_payment(payment_id, company):
    """Lock the owning transaction first, then the payment (fixed order)."""
    try:
        tx_id = _payments(company).values_list("transaction_id", flat=True).get(pk=payment_id)
    except (Payment.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Payment {payment_id} does not exist", field="payment_id")
    tx = lock_one(_transactions(company), tx_id, "Transaction")
    payment = lock_one(_payments(company), payment_id, "Payment")
    return tx, payment


# ----------------------------
# Payment workflows
# ----------------------------
@retry_on_conflict
def add_payment(
    transaction_id,
    amount,
    currency,
    exchange_rate=None,
    method="CASH",
    notes=None,
    details=None,
    user=None,
    company=None,
    branch=None,
    receipt_number=None,
):
    """
    Record one drawdown against a transaction.
    The transaction row stays locked from the status checks to the totals update.
    """
    amount = _positive_amount(amount)
    currency = get_currency(currency)
    detail = parse_details(method, details)
    receipt_number = bounded_text(receipt_number, "receipt_number", 100)

    with transaction.atomic():
        tx = lock_one(_transactions(company), transaction_id, "Transaction")

        if tx.payment_status in ("CANCELLED", "FULLY_PAID"):
            raise StateError(
                f"Transaction is {tx.payment_status}; no more payments allowed",
                field="payment_status",
            )
        if not tx.allow_partial_payment and tx.payments.completed().exists():
            raise StateError(
                "Transaction does not allow partial payments", field="allow_partial_payment")

        rate = resolve_rate(tx, currency, exchange_rate)
        in_base = quantize_money(amount * rate, tx.received_currency.decimal_places)
        _check_overpayment(tx, _active_total(tx) + in_base)

        pay_branch = get_branch(tx.company, branch) if branch is not None else tx.branch
        with model_errors():
            payment = Payment.objects.create(
                company=tx.company,
                transaction=tx,
                branch=pay_branch,
                amount=amount,
                currency=currency,
                exchange_rate=rate,
                amount_in_base=in_base,
                payment_method=method,
                details=detail.as_dict(),
                notes=notes,
                receipt_number=receipt_number,
                paid_by=user if getattr(user, "pk", None) else None,
                paid_at=timezone.now(),
            )
        _recompute_totals(tx, user)
        _cash_delta(payment, amount)

        log_action(
            action="add_payment",
            instance=payment,
            user=user,
            changes={
                "transaction_id": tx.pk,
                "amount": amount,
                "currency": currency.code,
                "exchange_rate": rate,
                "amount_in_base": in_base,
                "method": method,
                "remaining_balance": tx.remaining_balance,
            },
        )

    logger.info(
        "payment %s: %s %s -> %s %s on tx %s (remaining %s)",
        payment.pk, amount, currency.code, in_base,
        tx.received_currency_id, tx.pk, tx.remaining_balance,
    )
    return payment


@retry_on_conflict
def edit_payment(
    payment_id,
    reason,
    amount=None,
    exchange_rate=None,
    method=None,
    details=None,
    user=None,
    company=None,
):
    """
    Replace a payment's amount / rate / method.
    The previous version is kept as a PaymentEdit row.
    """
    reason = _require_reason(reason)
    new_amount = _positive_amount(amount) if amount is not None else None

    with transaction.atomic():
        tx, payment = _lock_payment(payment_id, company)

        if payment.status == "CANCELLED":
            raise StateError("Cancelled payments cannot be edited", field="status")
        if tx.is_terminal:
            raise StateError(
                f"Transaction is {tx.payment_status}; its payments are frozen",
                field="payment_status",
            )

        new_amount = new_amount if new_amount is not None else payment.amount
        new_method = method or payment.payment_method
        if details is not None or new_method != payment.payment_method:
            new_details = parse_details(new_method, details).as_dict()
        else:
            new_details = payment.details
        new_rate = resolve_rate(
            tx, payment.currency,
            exchange_rate if exchange_rate is not None else payment.exchange_rate,
        )
        new_in_base = quantize_money(new_amount * new_rate, tx.received_currency.decimal_places)

        _check_overpayment(tx, _active_total(tx, exclude=payment) + new_in_base)

        PaymentEdit.objects.create(
            company=payment.company,
            payment=payment,
            previous_amount=payment.amount,
            previous_exchange_rate=payment.exchange_rate,
            previous_amount_in_base=payment.amount_in_base,
            previous_method=payment.payment_method,
            new_amount=new_amount,
            new_exchange_rate=new_rate,
            new_amount_in_base=new_in_base,
            new_method=new_method,
            reason=reason,
            edited_by=user if getattr(user, "pk", None) else None,
        )

        # back out the old cash effect, then apply the new one
        _cash_delta(payment, -payment.amount)
        old = {
            "amount": payment.amount,
            "exchange_rate": payment.exchange_rate,
            "amount_in_base": payment.amount_in_base,
            "method": payment.payment_method,
        }
        payment.amount = new_amount
        payment.exchange_rate = new_rate
        payment.amount_in_base = new_in_base
        payment.payment_method = new_method
        payment.details = new_details
        payment.is_edited = True
        payment.edit_reason = reason
        payment.edited_at = timezone.now()
        with model_errors():
            payment.save()
        _cash_delta(payment, new_amount)

        _recompute_totals(tx, user)
        log_action(
            action="edit_payment",
            instance=payment,
            user=user,
            changes={
                "before": old,
                "after": {
                    "amount": new_amount,
                    "exchange_rate": new_rate,
                    "amount_in_base": new_in_base,
                    "method": new_method,
                },
                "reason": reason,
            },
        )
    return payment


@retry_on_conflict
def cancel_payment(payment_id, reason, user=None, company=None):
    """Soft-cancel: the row stays, it just stops counting."""
    reason = _require_reason(reason)

    with transaction.atomic():
        tx, payment = _lock_payment(payment_id, company)

        if payment.status == "CANCELLED":
            raise StateError("Payment is already cancelled", field="status")
        if tx.payment_status == "FULLY_PAID":
            raise StateError(
                "Transaction is FULLY_PAID; its payments are frozen", field="payment_status")

        payment.status = "CANCELLED"
        payment.cancel_reason = reason
        payment.cancelled_by = user if getattr(user, "pk", None) else None
        payment.cancelled_at = timezone.now()
        with model_errors():
            payment.save()

        _cash_delta(payment, -payment.amount)
        _recompute_totals(tx, user)
        log_action(
            action="cancel_payment",
            instance=payment,
            user=user,
            changes={
                "amount": payment.amount,
                "currency": payment.currency_id,
                "amount_in_base": payment.amount_in_base,
                "reason": reason,
                "remaining_balance": tx.remaining_balance,
            },
        )
    logger.info("payment %s cancelled on tx %s: %s", payment.pk, tx.pk, reason)
    return payment


# ----------------------------
# Transaction workflows
# ----------------------------
@retry_on_conflict
def complete_transaction(transaction_id, user=None, company=None):
    """Mark FULLY_PAID once the remaining balance sits inside the tolerance band."""
    with transaction.atomic():
        tx = lock_one(_transactions(company), transaction_id, "Transaction")
        if tx.is_terminal:
            raise StateError(
                f"Transaction is already {tx.payment_status}", field="payment_status")

        _recompute_totals(tx, user)
        band = _band(tx)
        if abs(tx.remaining_balance) > band:
            raise StateError(
                f"Remaining balance {tx.remaining_balance} {tx.received_currency_id} "
                f"is outside the completion tolerance of {band}",
                field="remaining_balance",
            )

        previous = tx.payment_status
        tx.transition_to("FULLY_PAID")
        tx.completed_at = timezone.now()
        tx.save(update_fields=["payment_status", "completed_at"])
        _record_status(tx, previous, user, reason="completed")

        log_action(
            action="complete_transaction",
            instance=tx,
            user=user,
            changes={
                "total_received": tx.total_received,
                "total_paid": tx.total_paid,
                "remaining_balance": tx.remaining_balance,
                "tolerance": band,
            },
        )
    return tx


@retry_on_conflict
def cancel_transaction(transaction_id, reason, user=None, company=None):
    """OPEN / PARTIAL -> CANCELLED. Existing payments are left as they are."""
    reason = _require_reason(reason)
    with transaction.atomic():
        tx = lock_one(_transactions(company), transaction_id, "Transaction")
        previous = tx.payment_status
        tx.transition_to("CANCELLED")
        tx.cancelled_at = timezone.now()
        tx.cancel_reason = reason
        tx.save(update_fields=["payment_status", "cancelled_at", "cancel_reason"])
        _record_status(tx, previous, user, reason=reason)
        log_action(
            action="cancel_transaction",
            instance=tx,
            user=user,
            changes={"previous_status": previous, "reason": reason},
        )
    return tx


# ----------------------------
# Reads
# ----------------------------
def get_transaction(transaction_id, company=None):
    try:
        return _transactions(company).get(pk=transaction_id)
    except (Transaction.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Transaction {transaction_id} does not exist", field="transaction_id")


def list_payments(transaction_id, company=None, include_cancelled=True):
    tx = get_transaction(transaction_id, company)
    qs = tx.payments.select_related("currency", "paid_by").order_by("paid_at", "id")
    if not include_cancelled:
        qs = qs.completed()
    return list(qs)


def payment_history(payment_id, company=None):
    """Every previous version of a payment, oldest first."""
    if not _payments(company).filter(pk=payment_id).exists():
        raise NotFoundError(f"Payment {payment_id} does not exist", field="payment_id")
    return list(PaymentEdit.objects.filter(payment_id=payment_id))


def transaction_summary(tx):
    """Conservation figures for one transaction."""
    counts = tx.payments.aggregate(
        active=Count("id", filter=Q(status="COMPLETED")),
        cancelled=Count("id", filter=Q(status="CANCELLED")),
    )
    paid = _active_total(tx)
    band = _band(tx)
    return {
        "transaction_id": tx.pk,
        "currency": tx.received_currency_id,
        "total_received": tx.total_received,
        "total_paid": paid,
        "remaining_balance": tx.total_received - paid,
        "tolerance": band,
        "active_payments": counts["active"],
        "cancelled_payments": counts["cancelled"],
        "payment_status": tx.payment_status,
        "can_complete": not tx.is_terminal and abs(tx.total_received - paid) <= band,
    }
