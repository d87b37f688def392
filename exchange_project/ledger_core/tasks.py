import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def recompute_all_balances(company_id):
    """
    Drift check: rebuild every cash balance of a tenant from payments
    and adjustments. Returns the number of rows that had drifted.
    """
    # import lazily to avoid circular imports at module import time
    from .models import Company
    from .services.balance import refresh_all_balances

    company = Company.objects.get(pk=company_id)
    drifted = refresh_all_balances(company)
    for row, drift in drifted:
        logger.warning("corrected drift of %s on %s (%s)", drift, row, company.slug)
    return len(drifted)


@shared_task
def recompute_all_balances_for_all_tenants():
    from .models import Company

    total = 0
    for company_id in Company.objects.values_list("pk", flat=True):
        total += recompute_all_balances(company_id)
    logger.info("nightly balance check done: %s drifted rows", total)
    return total
