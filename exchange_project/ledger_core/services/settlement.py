import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import List
from django.db import transaction
from django.db.models import Count, F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from ..exceptions import NotFoundError, StateError, ValidationError, model_errors
from ..models import Obligation, Settlement, Transaction
from ..money import ZERO, quantize_money, to_decimal
from .audit_helper import log_action
from .locking import lock_one, lock_rows, retry_on_conflict
from .lookups import bounded_text, get_branch, get_currency

logger = logging.getLogger(__name__)

STRATEGIES = ("FIFO", "LIFO", "BEST_RATE")

AGE_BUCKETS = [
    ("0-7 days", timedelta(days=7)),
    ("8-14 days", timedelta(days=14)),
    ("15-30 days", timedelta(days=30)),
    ("30+ days", None),
]


@dataclass
class SettlementSuggestion:
    """One proposed allocation of an incoming credit."""

    outgoing: Obligation
    amount: Decimal
    estimated_profit: Decimal
    days_outstanding: int
    match_score: Decimal
    reason: str

    def as_dict(self):
        return {
            "outgoing_id": self.outgoing.pk,
            "outgoing_reference": self.outgoing.reference,
            "outgoing_unsettled": str(self.outgoing.unsettled),
            "outgoing_rate": str(self.outgoing.rate),
            "amount": str(self.amount),
            "estimated_profit": str(self.estimated_profit),
            "days_outstanding": self.days_outstanding,
            "match_score": str(self.match_score),
            "reason": self.reason,
        }


@dataclass
class AutoSettlementResult:
    incoming: Obligation
    strategy: str
    settlements: List[Settlement] = field(default_factory=list)
    total_settled: Decimal = ZERO
    total_profit: Decimal = ZERO

    @property
    def remaining(self):
        return self.incoming.unsettled

    @property
    def settlement_count(self):
        return len(self.settlements)

    def as_dict(self):
        return {
            "incoming_id": self.incoming.pk,
            "strategy": self.strategy,
            "settlement_ids": [s.pk for s in self.settlements],
            "settlement_count": self.settlement_count,
            "total_settled": str(self.total_settled),
            "total_profit": str(self.total_profit),
            "remaining": str(self.remaining),
        }


# ----------------------------
# Helpers
# ----------------------------
def _obligations(company):
    qs = Obligation.objects.all()
    return qs.for_company(company) if company is not None else qs


def _profit(amount, outgoing_rate, incoming_rate):
    # rates are units of the obligation currency per base unit
    return quantize_money(amount / outgoing_rate - amount / incoming_rate, 6)


def _order(candidates, strategy):
    """Deterministic candidate order for each strategy; ties go to the lower id."""
    if strategy == "FIFO":
        return sorted(candidates, key=lambda o: (o.created_at, o.pk))
    if strategy == "LIFO":
        return sorted(candidates, key=lambda o: (o.created_at, o.pk), reverse=True)
    if strategy == "BEST_RATE":
        # lowest outgoing rate = widest margin against the incoming rate
        return sorted(candidates, key=lambda o: (o.rate, o.created_at, o.pk))
    raise ValidationError(f"Unknown settlement strategy: {strategy}", field="strategy")


def _candidate_qs(incoming):
    return (
        Obligation.objects.for_company(incoming.company_id)
        .unsettled()
        .filter(direction="OUTGOING", currency_id=incoming.currency_id)
    )


def _check_incoming(incoming):
    if incoming.direction != "INCOMING":
        raise ValidationError(
            f"Obligation {incoming.pk} is not an incoming credit", field="incoming_id")
    if incoming.status == "CANCELLED":
        raise StateError(f"Incoming credit {incoming.pk} is cancelled", field="status")
    if incoming.unsettled <= ZERO:
        raise StateError(
            f"Incoming credit {incoming.pk} has nothing left to allocate", field="unsettled")


def _match_score(outgoing, incoming, days):
    """0-100: base 50, age up to 30, margin up to 20, +10 when it clears the debt."""
    score = Decimal(50) + min(Decimal(days), Decimal(30))
    margin = (Decimal(1) / outgoing.rate - Decimal(1) / incoming.rate) * 100
    if margin > 0:
        score += min(margin * 10, Decimal(20))
    if outgoing.unsettled <= incoming.unsettled:
        score += 10
    return min(score, Decimal(100)).quantize(Decimal("0.01"))


def _reason(outgoing, incoming, strategy, days):
    if strategy == "FIFO":
        if days > 30:
            return "Oldest debt, outstanding for over 30 days"
        if days > 14:
            return f"Priority, outstanding for {days} days"
        return f"FIFO order, created {outgoing.created_at:%b %d}"
    if strategy == "BEST_RATE":
        if _profit(outgoing.unsettled, outgoing.rate, incoming.rate) > 100:
            return "High profit potential"
        return "Optimized for profit"
    return "Newest debt first"


def _plan(incoming, candidates, strategy, limit=0):
    """Greedy walk: allocate min(candidate.unsettled, remaining credit) until exhausted."""
    now = timezone.now()
    remaining = incoming.unsettled
    plan = []
    for outgoing in _order(candidates, strategy):
        if remaining <= ZERO:
            break
        if limit and len(plan) >= limit:
            break
        amount = min(remaining, outgoing.unsettled)
        if amount <= ZERO:
            continue
        days = max((now - outgoing.created_at).days, 0)
        plan.append(SettlementSuggestion(
            outgoing=outgoing,
            amount=amount,
            estimated_profit=_profit(amount, outgoing.rate, incoming.rate),
            days_outstanding=days,
            match_score=_match_score(outgoing, incoming, days),
            reason=_reason(outgoing, incoming, strategy, days),
        ))
        remaining -= amount
    return plan


def _settle_locked(outgoing, incoming, amount, user=None, notes=""):
    """
    Write one allocation. Both rows must already be locked by the caller.
    All checks run before the first write.
    """
    if outgoing.direction != "OUTGOING":
        raise ValidationError(
            f"Obligation {outgoing.pk} is not an outgoing debt", field="outgoing_id")
    if incoming.direction != "INCOMING":
        raise ValidationError(
            f"Obligation {incoming.pk} is not an incoming credit", field="incoming_id")
    if outgoing.company_id != incoming.company_id:
        raise ValidationError("Obligations belong to different tenants", field="outgoing_id")
    if outgoing.currency_id != incoming.currency_id:
        raise ValidationError(
            f"Currency mismatch: {outgoing.currency_id} vs {incoming.currency_id}",
            field="currency",
        )
    for side in (outgoing, incoming):
        if side.status == "CANCELLED":
            raise StateError(f"Obligation {side.pk} is cancelled", field="status")
        if side.unsettled <= ZERO:
            raise StateError(f"Obligation {side.pk} is already settled", field="unsettled")
    if amount > outgoing.unsettled:
        raise ValidationError(
            f"Amount {amount} exceeds outgoing unsettled {outgoing.unsettled}", field="amount")
    if amount > incoming.unsettled:
        raise ValidationError(
            f"Amount {amount} exceeds incoming unsettled {incoming.unsettled}", field="amount")

    settlement = Settlement.objects.create(
        company=outgoing.company,
        outgoing=outgoing,
        incoming=incoming,
        amount=amount,
        outgoing_rate=outgoing.rate,
        incoming_rate=incoming.rate,
        profit=_profit(amount, outgoing.rate, incoming.rate),
        notes=notes or "",
        executed_by=user if getattr(user, "pk", None) else None,
    )

    now = timezone.now()
    for side in (outgoing, incoming):
        side.settled_amount += amount
        if side.unsettled == ZERO:
            side.status = "SETTLED"
            side.settled_at = now
        else:
            side.status = "PARTIAL"
        side.save(update_fields=["settled_amount", "status", "settled_at"])

    log_action(
        action="execute_settlement",
        instance=settlement,
        user=user,
        changes={
            "outgoing_id": outgoing.pk,
            "incoming_id": incoming.pk,
            "amount": amount,
            "currency": outgoing.currency_id,
            "profit": settlement.profit,
            "outgoing_unsettled": outgoing.unsettled,
            "incoming_unsettled": incoming.unsettled,
        },
    )
    return settlement


# ----------------------------
# Obligations
# ----------------------------
def open_obligation(
    company,
    direction,
    currency,
    amount,
    rate,
    branch=None,
    reference="",
    transaction_obj=None,
    user=None,
):
    """Register an outstanding incoming credit or outgoing debt."""
    if direction not in ("INCOMING", "OUTGOING"):
        raise ValidationError(f"Unknown direction: {direction}", field="direction")
    amount = to_decimal(amount, field="amount")
    if amount <= ZERO:
        raise ValidationError("amount must be positive", field="amount")
    rate = to_decimal(rate, field="rate", places=8)
    if rate <= ZERO:
        raise ValidationError("rate must be positive", field="rate")
    currency = get_currency(currency)
    branch = get_branch(company, branch)
    reference = bounded_text(reference, "reference", 64) or ""

    with transaction.atomic():
        with model_errors():
            obligation = Obligation.objects.create(
                company=company,
                branch=branch,
                transaction=transaction_obj,
                reference=reference,
                direction=direction,
                currency=currency,
                amount=amount,
                rate=rate,
                created_by=user if getattr(user, "pk", None) else None,
            )
        log_action(
            action="open_obligation",
            instance=obligation,
            user=user,
            changes={
                "direction": direction,
                "currency": currency.code,
                "amount": amount,
                "rate": rate,
            },
        )
    return obligation


def obligation_from_transaction(transaction_id, direction, rate, user=None, company=None):
    """Pending remittance: the transaction's received amount becomes an obligation."""
    qs = Transaction.objects.all() if company is None else Transaction.objects.for_company(company)
    try:
        tx = qs.get(pk=transaction_id)
    except (Transaction.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Transaction {transaction_id} does not exist", field="transaction_id")
    if tx.payment_status == "CANCELLED":
        raise StateError("Cancelled transactions cannot become obligations", field="payment_status")
    if tx.obligations.exclude(status="CANCELLED").filter(direction=direction).exists():
        raise StateError(
            f"Transaction {tx.pk} already has an open {direction} obligation",
            field="transaction_id",
        )
    return open_obligation(
        tx.company,
        direction,
        tx.received_currency,
        tx.total_received,
        rate,
        branch=tx.branch,
        reference=tx.reference or "",
        transaction_obj=tx,
        user=user,
    )


@retry_on_conflict
def cancel_obligation(obligation_id, reason, user=None, company=None):
    """Only an untouched obligation can be cancelled; settlements are never undone."""
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required", field="reason")
    with transaction.atomic():
        obligation = lock_one(_obligations(company), obligation_id, "Obligation")
        if obligation.status == "CANCELLED":
            raise StateError("Obligation is already cancelled", field="status")
        if obligation.settled_amount > ZERO:
            raise StateError(
                "Obligation has settlements and cannot be cancelled", field="settled_amount")
        obligation.status = "CANCELLED"
        obligation.cancelled_at = timezone.now()
        obligation.cancel_reason = str(reason).strip()
        obligation.save(update_fields=["status", "cancelled_at", "cancel_reason"])
        log_action(
            action="cancel_obligation",
            instance=obligation,
            user=user,
            changes={"reason": obligation.cancel_reason},
        )
    return obligation


# ----------------------------
# Matching
# ----------------------------
def suggest_settlement(incoming_id, strategy="FIFO", limit=0, company=None):
    """Read-only preview of what auto_settle would allocate."""
    if strategy not in STRATEGIES:
        raise ValidationError(f"Unknown settlement strategy: {strategy}", field="strategy")
    try:
        incoming = _obligations(company).get(pk=incoming_id)
    except (Obligation.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Obligation {incoming_id} does not exist", field="incoming_id")
    _check_incoming(incoming)
    return _plan(incoming, list(_candidate_qs(incoming)), strategy, limit=limit)


@retry_on_conflict
def execute_settlement(outgoing_id, incoming_id, amount, user=None, notes="", company=None):
    """Allocate `amount` of an incoming credit to one outgoing debt."""
    amount = to_decimal(amount, field="amount")
    if amount <= ZERO:
        raise ValidationError("amount must be positive", field="amount")

    outgoing_pk, incoming_pk = _as_pk(outgoing_id), _as_pk(incoming_id)

    with transaction.atomic():
        # both rows, ascending pk; another tenant's rows are never locked or seen
        scoped = _obligations(company).filter(pk__in=[outgoing_pk, incoming_pk])
        rows = {o.pk: o for o in lock_rows(scoped)}
        outgoing = rows.get(outgoing_pk)
        incoming = rows.get(incoming_pk)
        if incoming is None:
            raise NotFoundError(f"Obligation {incoming_id} does not exist", field="incoming_id")
        if outgoing is None:
            raise NotFoundError(f"Obligation {outgoing_id} does not exist", field="outgoing_id")
        settlement = _settle_locked(outgoing, incoming, amount, user=user, notes=notes)

    logger.info(
        "settled %s %s: in#%s -> out#%s (profit %s)",
        amount, outgoing.currency_id, incoming.pk, outgoing.pk, settlement.profit,
    )
    return settlement


def _as_pk(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFoundError(f"Obligation {value} does not exist", field="obligation_id")


@retry_on_conflict
def auto_settle(incoming_id, strategy="FIFO", user=None, company=None):
    """
    Allocate an incoming credit across outgoing debts in strategy order.
    The credit and every candidate are locked together (ascending pk)
    for the whole run; running out of candidates is not an error.
    """
    if strategy not in STRATEGIES:
        raise ValidationError(f"Unknown settlement strategy: {strategy}", field="strategy")
    incoming_pk = _as_pk(incoming_id)

    with transaction.atomic():
        try:
            credit = _obligations(company).get(pk=incoming_pk)
        except Obligation.DoesNotExist:
            raise NotFoundError(f"Obligation {incoming_id} does not exist", field="incoming_id")
        candidate_ids = list(_candidate_qs(credit).values_list("pk", flat=True))

        locked = lock_rows(Obligation.objects.filter(pk__in=candidate_ids + [incoming_pk]))
        incoming = next(o for o in locked if o.pk == incoming_pk)
        _check_incoming(incoming)
        # re-check under the lock
        candidates = [
            o for o in locked
            if o.pk != incoming_pk and o.direction == "OUTGOING"
            and o.status != "CANCELLED" and o.unsettled > ZERO
            and o.currency_id == incoming.currency_id
        ]

        result = AutoSettlementResult(incoming=incoming, strategy=strategy)
        for step in _plan(incoming, candidates, strategy):
            settlement = _settle_locked(
                step.outgoing, incoming, step.amount, user=user,
                notes=f"auto-settle ({strategy})",
            )
            result.settlements.append(settlement)
            result.total_settled += settlement.amount
            result.total_profit += settlement.profit

    logger.info(
        "auto-settle %s on in#%s: %s allocations, %s settled, %s left",
        strategy, incoming.pk, result.settlement_count, result.total_settled, result.remaining,
    )
    return result


# ----------------------------
# Reads
# ----------------------------
def settlement_history(obligation_id, company=None):
    if not _obligations(company).filter(pk=obligation_id).exists():
        raise NotFoundError(f"Obligation {obligation_id} does not exist", field="obligation_id")
    return list(
        Settlement.objects.filter(Q(outgoing_id=obligation_id) | Q(incoming_id=obligation_id))
        .select_related("outgoing", "incoming")
    )


def unsettled_summary(company, direction="OUTGOING"):
    """Open obligations grouped by status and by age."""
    open_qs = Obligation.objects.for_company(company).unsettled().filter(direction=direction)
    by_status = list(
        open_qs.values("status", "currency_id")
        .annotate(
            count=Count("id"),
            total=Coalesce(Sum("amount"), Decimal("0")),
            remaining=Coalesce(Sum(F("amount") - F("settled_amount")), Decimal("0")),
        )
        .order_by("status", "currency_id")
    )

    now = timezone.now()
    by_age = {label: {"bucket": label, "count": 0, "remaining": {}} for label, _ in AGE_BUCKETS}
    for obligation in open_qs.only("created_at", "amount", "settled_amount", "currency"):
        age = now - obligation.created_at
        label = next(lbl for lbl, limit in AGE_BUCKETS if limit is None or age <= limit)
        bucket = by_age[label]
        bucket["count"] += 1
        per_currency = bucket["remaining"]
        per_currency[obligation.currency_id] = (
            per_currency.get(obligation.currency_id, ZERO) + obligation.unsettled
        )
    return {"by_status": by_status, "by_age": [by_age[label] for label, _ in AGE_BUCKETS]}
