from decimal import Decimal
from django.contrib.auth import get_user_model
from ..models import Branch, Company, Currency, EntityMembership, Transaction


def make_currencies():
    """USD/CAD/EUR with cents, IRR without a minor unit."""
    return {
        "USD": Currency.objects.create(code="USD", name="US Dollar", symbol="$", decimal_places=2),
        "CAD": Currency.objects.create(code="CAD", name="Canadian Dollar", symbol="$", decimal_places=2),
        "EUR": Currency.objects.create(code="EUR", name="Euro", symbol="€", decimal_places=2),
        "IRR": Currency.objects.create(code="IRR", name="Iranian Rial", decimal_places=0),
    }


def make_tenant(slug, currency, username=None):
    """Company with one MAIN branch and, optionally, an owner user."""
    company = Company.objects.create(name=slug.title(), slug=slug, default_currency=currency)
    branch = Branch.objects.create(company=company, name="Main Office", code="MAIN")
    user = None
    if username:
        user = get_user_model().objects.create_user(
            username=username, password="pw", default_company=company, default_branch=branch)
        EntityMembership.objects.create(user=user, company=company, role="owner")
    return company, branch, user


def make_transaction(company, branch, currency, total, partial=True, reference=None):
    return Transaction.objects.create(
        company=company,
        branch=branch,
        reference=reference,
        total_received=Decimal(total),
        received_currency=currency,
        allow_partial_payment=partial,
    )
