"""
Read-through cache for CashBalance reads.

Keyed by (tenant, branch, currency). The database row stays the system of
record: entries are dropped on commit of any write to the row and are
never consulted on a write path.
"""
from django.core.cache import cache
from django.db import transaction
from ..conf import ledger_setting


def balance_key(company_id, branch_id, currency_code):
    return f"ledger:balance:{company_id}:{branch_id or 'hq'}:{currency_code}"


def get_cached(company_id, branch_id, currency_code):
    return cache.get(balance_key(company_id, branch_id, currency_code))


def set_cached(balance):
    cache.set(
        balance_key(balance.company_id, balance.branch_id, balance.currency_id),
        balance,
        timeout=ledger_setting("BALANCE_CACHE_TIMEOUT"),
    )


def invalidate(company_id, branch_id, currency_code):
    """
    Drop the entry now and again once the write commits.
    The second delete evicts anything a concurrent reader cached from
    the pre-commit row in between.
    """
    key = balance_key(company_id, branch_id, currency_code)
    cache.delete(key)
    transaction.on_commit(lambda: cache.delete(key))
