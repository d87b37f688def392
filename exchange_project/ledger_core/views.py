import functools
import json
import logging
from decimal import Decimal
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST
from .exceptions import LedgerError, ValidationError
from .services import balance, batch_payment, payment, reconciliation, settlement

logger = logging.getLogger(__name__)


# ----------------------------
# Plumbing
# ----------------------------
def ledger_view(view):
    """
    Tenant guard + error rendering for every ledger endpoint.
    LedgerError subclasses become {"ok": false, "error": {...}} with their status.
    """

    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        if getattr(request, "company", None) is None:
            return JsonResponse(
                {"ok": False, "error": {"kind": "forbidden", "field": None,
                                        "message": "No active company"}},
                status=403,
            )
        try:
            return view(request, *args, **kwargs)
        except LedgerError as e:
            if e.status >= 409:
                logger.info("%s rejected: %s", view.__name__, e.message)
            return JsonResponse({"ok": False, "error": e.as_dict()}, status=e.status)

    return wrapper


def _body(request):
    if not request.body:
        return {}
    try:
        # JSON numbers arrive as Decimal, never float
        data = json.loads(request.body, parse_float=Decimal)
    except ValueError:
        raise ValidationError("Request body is not valid JSON", field="body")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object", field="body")
    return data


def _branch(request, data):
    # explicit branch wins; otherwise the actor's branch
    if "branch" in data:
        return data["branch"]
    return request.branch


def _int(value, field, default=0):
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field)


def _ok(payload, status=200):
    return JsonResponse({"ok": True, **payload}, status=status)


def _money(value):
    return None if value is None else str(value)


def payment_json(p):
    return {
        "id": p.pk,
        "transaction_id": p.transaction_id,
        "amount": _money(p.amount),
        "currency": p.currency_id,
        "exchange_rate": _money(p.exchange_rate),
        "amount_in_base": _money(p.amount_in_base),
        "payment_method": p.payment_method,
        "details": p.details,
        "status": p.status,
        "is_edited": p.is_edited,
        "paid_at": p.paid_at.isoformat() if p.paid_at else None,
        "cancel_reason": p.cancel_reason,
    }


def transaction_json(tx):
    return {
        "id": tx.pk,
        "reference": tx.reference,
        "total_received": _money(tx.total_received),
        "received_currency": tx.received_currency_id,
        "total_paid": _money(tx.total_paid),
        "remaining_balance": _money(tx.remaining_balance),
        "payment_status": tx.payment_status,
    }


def balance_json(b):
    return {
        "branch_id": b.branch_id,
        "currency": b.currency_id,
        "auto_calculated_balance": _money(b.auto_calculated_balance),
        "manual_adjustment": _money(b.manual_adjustment),
        "balance": _money(b.balance),
        "version": b.version,
    }


def settlement_json(s):
    return {
        "id": s.pk,
        "outgoing_id": s.outgoing_id,
        "incoming_id": s.incoming_id,
        "amount": _money(s.amount),
        "profit": _money(s.profit),
        "executed_at": s.executed_at.isoformat() if s.executed_at else None,
    }


def reconciliation_json(r):
    return {
        "id": r.pk,
        "branch_id": r.branch_id,
        "date": r.date.isoformat(),
        "currency": r.currency_id,
        "opening_balance": _money(r.opening_balance),
        "closing_balance": _money(r.closing_balance),
        "expected_balance": _money(r.expected_balance),
        "variance": _money(r.variance),
        "breakdown_variance": r.breakdown_variance,
        "is_breached": r.is_breached,
    }


# ----------------------------
# Payments
# ----------------------------
@require_http_methods(["GET", "POST"])
@ledger_view
def transaction_payments_view(request, transaction_id):
    if request.method == "GET":
        payments = payment.list_payments(transaction_id, company=request.company)
        return _ok({"payments": [payment_json(p) for p in payments]})

    data = _body(request)
    p = payment.add_payment(
        transaction_id,
        data.get("amount"),
        data.get("currency"),
        exchange_rate=data.get("exchange_rate"),
        method=data.get("payment_method", "CASH"),
        notes=data.get("notes"),
        details=data.get("details"),
        user=request.user,
        company=request.company,
        branch=data.get("branch"),
        receipt_number=data.get("receipt_number"),
    )
    tx = payment.get_transaction(transaction_id, company=request.company)
    return _ok({"payment": payment_json(p), "transaction": transaction_json(tx)}, status=201)


@require_POST
@ledger_view
def edit_payment_view(request, payment_id):
    data = _body(request)
    p = payment.edit_payment(
        payment_id,
        data.get("reason"),
        amount=data.get("amount"),
        exchange_rate=data.get("exchange_rate"),
        method=data.get("payment_method"),
        details=data.get("details"),
        user=request.user,
        company=request.company,
    )
    return _ok({"payment": payment_json(p)})


@require_POST
@ledger_view
def cancel_payment_view(request, payment_id):
    data = _body(request)
    p = payment.cancel_payment(
        payment_id, data.get("reason"), user=request.user, company=request.company)
    return _ok({"payment": payment_json(p)})


@require_GET
@ledger_view
def payment_history_view(request, payment_id):
    edits = payment.payment_history(payment_id, company=request.company)
    return _ok({"edits": [
        {
            "previous_amount": _money(e.previous_amount),
            "new_amount": _money(e.new_amount),
            "previous_exchange_rate": _money(e.previous_exchange_rate),
            "new_exchange_rate": _money(e.new_exchange_rate),
            "previous_method": e.previous_method,
            "new_method": e.new_method,
            "reason": e.reason,
            "edited_at": e.edited_at.isoformat(),
        }
        for e in edits
    ]})


@require_POST
@ledger_view
def complete_transaction_view(request, transaction_id):
    tx = payment.complete_transaction(
        transaction_id, user=request.user, company=request.company)
    return _ok({"transaction": transaction_json(tx)})


@require_POST
@ledger_view
def cancel_transaction_view(request, transaction_id):
    data = _body(request)
    tx = payment.cancel_transaction(
        transaction_id, data.get("reason"), user=request.user, company=request.company)
    return _ok({"transaction": transaction_json(tx)})


@require_GET
@ledger_view
def transaction_summary_view(request, transaction_id):
    tx = payment.get_transaction(transaction_id, company=request.company)
    summary = payment.transaction_summary(tx)
    return _ok({"summary": {k: _money(v) if isinstance(v, Decimal) else v
                            for k, v in summary.items()}})


@require_GET
@ledger_view
def pending_transactions_view(request):
    txs = batch_payment.get_pending_transactions(
        request.company, currency=request.GET.get("currency") or None)
    return _ok({"transactions": [transaction_json(tx) for tx in txs]})


@require_POST
@ledger_view
def batch_preview_view(request):
    data = _body(request)
    preview = batch_payment.preview_batch_payment(
        request.company,
        data.get("transaction_ids"),
        data.get("total_amount"),
        data.get("currency"),
        exchange_rate=data.get("exchange_rate"),
        strategy=data.get("strategy", "FIFO"),
    )
    return _ok({"preview": preview.as_dict()})


@require_POST
@ledger_view
def batch_payment_view(request):
    data = _body(request)
    result = batch_payment.process_batch_payment(
        request.company,
        data.get("transaction_ids"),
        data.get("total_amount"),
        data.get("currency"),
        exchange_rate=data.get("exchange_rate"),
        method=data.get("payment_method", "CASH"),
        strategy=data.get("strategy", "FIFO"),
        notes=data.get("notes") or "",
        details=data.get("details"),
        user=request.user,
        branch=data.get("branch"),
    )
    return _ok({"batch": result.as_dict()}, status=201)


# ----------------------------
# Balances
# ----------------------------
@require_GET
@ledger_view
def balance_view(request, currency):
    row = balance.get_balance(request.company, _branch(request, request.GET), currency)
    return _ok({"balance": balance_json(row)})


@require_GET
@ledger_view
def balance_list_view(request):
    rows = balance.list_balances(request.company, request.GET.get("branch"))
    return _ok({"balances": [balance_json(b) for b in rows]})


@require_POST
@ledger_view
def create_adjustment_view(request):
    data = _body(request)
    adj = balance.apply_adjustment(
        request.company,
        _branch(request, data),
        data.get("currency"),
        data.get("delta"),
        data.get("reason"),
        user=request.user,
    )
    return _ok({
        "adjustment": {
            "id": adj.pk,
            "delta": _money(adj.delta),
            "balance_before": _money(adj.balance_before),
            "balance_after": _money(adj.balance_after),
        },
        "balance": balance_json(adj.cash_balance),
    }, status=201)


# ----------------------------
# Settlement
# ----------------------------
@require_POST
@ledger_view
def open_obligation_view(request):
    data = _body(request)
    ob = settlement.open_obligation(
        request.company,
        data.get("direction"),
        data.get("currency"),
        data.get("amount"),
        data.get("rate"),
        branch=_branch(request, data),
        reference=data.get("reference", ""),
        user=request.user,
    )
    return _ok({"obligation": {
        "id": ob.pk, "direction": ob.direction, "currency": ob.currency_id,
        "amount": _money(ob.amount), "rate": _money(ob.rate), "status": ob.status,
    }}, status=201)


@require_GET
@ledger_view
def suggest_settlement_view(request, incoming_id):
    suggestions = settlement.suggest_settlement(
        incoming_id,
        strategy=request.GET.get("strategy", "FIFO"),
        limit=_int(request.GET.get("limit"), "limit"),
        company=request.company,
    )
    return _ok({"suggestions": [s.as_dict() for s in suggestions]})


@require_POST
@ledger_view
def execute_settlement_view(request):
    data = _body(request)
    s = settlement.execute_settlement(
        data.get("outgoing_id"),
        data.get("incoming_id"),
        data.get("amount"),
        user=request.user,
        notes=data.get("notes", ""),
        company=request.company,
    )
    return _ok({"settlement": settlement_json(s)}, status=201)


@require_POST
@ledger_view
def auto_settle_view(request, incoming_id):
    data = _body(request)
    result = settlement.auto_settle(
        incoming_id,
        strategy=data.get("strategy", "FIFO"),
        user=request.user,
        company=request.company,
    )
    return _ok({"result": result.as_dict()})


@require_GET
@ledger_view
def unsettled_summary_view(request):
    summary = settlement.unsettled_summary(
        request.company, direction=request.GET.get("direction", "OUTGOING"))
    # JsonResponse's encoder renders Decimal as str
    return _ok({"summary": summary})


# ----------------------------
# Reconciliation
# ----------------------------
@require_POST
@ledger_view
def create_reconciliation_view(request):
    data = _body(request)
    recon = reconciliation.create_reconciliation(
        request.company,
        _branch(request, data),
        data.get("date"),
        data.get("opening_balance"),
        data.get("closing_balance"),
        currency_breakdown=data.get("currency_breakdown"),
        notes=data.get("notes", ""),
        user=request.user,
        currency=data.get("currency"),
    )
    return _ok({"reconciliation": reconciliation_json(recon)}, status=201)


@require_GET
@ledger_view
def expected_balance_view(request):
    rows = reconciliation.get_expected_balance(
        request.company, _branch(request, request.GET))
    return _ok({"expected": [r.as_dict() for r in rows]})


@require_GET
@ledger_view
def variance_report_view(request):
    rows = reconciliation.get_variance_report(
        request.company, days=_int(request.GET.get("days"), "days", default=30))
    return _ok({"reconciliations": [reconciliation_json(r) for r in rows]})
