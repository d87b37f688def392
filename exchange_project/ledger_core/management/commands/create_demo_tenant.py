from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils.text import slugify
from ledger_core.models import Branch, Company, Currency, EntityMembership, Transaction
from ledger_core.money import CURRENCY_DECIMALS
from ledger_core.services.balance import apply_adjustment
from ledger_core.services.payment import add_payment
from ledger_core.services.settlement import open_obligation


User = get_user_model()

CURRENCY_NAMES = {
    "USD": ("US Dollar", "$"),
    "CAD": ("Canadian Dollar", "$"),
    "EUR": ("Euro", "€"),
    "IRR": ("Iranian Rial", "﷼"),
}


class Command(BaseCommand):
    help = (
        "Create a demo exchange tenant (company, branch, user) with sample "
        "payments, an opening cash float and a few open obligations."
    )

    # Define command-line arguments
    def add_arguments(self, parser):
        parser.add_argument(
            "--company-name",
            default="Demo Exchange",
            help="Name of the demo company to create.",
        )
        parser.add_argument(
            "--username", default="demo", help="Username for the demo user."
        )
        parser.add_argument(
            "--password", default="demo123", help="Password for the demo user."
        )

    def unique_slug_for_company(self, name, max_tries=100):
        # "Demo Exchange" -> "demo-exchange" -> "demo-exchange-1" ...
        base = slugify(name) or "company"
        slug = base
        i = 1
        while Company.objects.filter(slug=slug).exists():
            slug = f"{base}-{i}"
            i += 1
            if i > max_tries:
                raise RuntimeError("Couldn't generate unique slug")
        return slug

    @transaction.atomic
    def handle(self, *args, **options):
        company_name = options["company_name"]
        username = options["username"]
        password = options["password"]

        # 1. Currencies
        currencies = {}
        for code, (name, symbol) in CURRENCY_NAMES.items():
            currencies[code], _ = Currency.objects.get_or_create(
                code=code,
                defaults={
                    "name": name,
                    "symbol": symbol,
                    "decimal_places": CURRENCY_DECIMALS.get(code, 2),
                },
            )

        # 2. Company + branch
        company, created = Company.objects.get_or_create(
            name=company_name,
            defaults={
                "default_currency": currencies["CAD"],
                "slug": self.unique_slug_for_company(company_name),
            },
        )
        if not created:
            self.stdout.write(self.style.WARNING(f"Company {company} already exists, nothing to do"))
            return
        branch = Branch.objects.create(company=company, name="Main Office", code="MAIN")
        self.stdout.write(self.style.SUCCESS(f"Created company: {company} / {branch}"))

        # 3. User with membership
        user, user_created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@example.com"},
        )
        if user_created:
            user.set_password(password)
        user.default_company = company
        user.default_branch = branch
        user.save()
        EntityMembership.objects.get_or_create(
            user=user, company=company, defaults={"role": "owner"})
        self.stdout.write(self.style.SUCCESS(f"Created user: {user.username} (pw={password})"))

        # 4. Opening cash float
        apply_adjustment(company, branch, "CAD", "10000", "Opening float", user=user)
        apply_adjustment(company, branch, "USD", "5000", "Opening float", user=user)
        self.stdout.write(self.style.SUCCESS("Recorded opening cash float (CAD, USD)"))

        # 5. A transaction paid in two currencies
        tx = Transaction.objects.create(
            company=company,
            branch=branch,
            reference="DEMO-0001",
            total_received=120_000_000,
            received_currency=currencies["IRR"],
            allow_partial_payment=True,
        )
        add_payment(tx.pk, "50000000", "IRR", method="CASH", user=user)
        add_payment(
            tx.pk, "500", "CAD", exchange_rate="84100",
            method="BANK_TRANSFER", details={"reference_id": "DEMO-WIRE-1"}, user=user,
        )
        tx.refresh_from_db()
        self.stdout.write(self.style.SUCCESS(
            f"Created transaction {tx.reference}: remaining {tx.remaining_balance} IRR"))

        # 6. Obligations waiting for settlement
        open_obligation(company, "OUTGOING", "IRR", "600000000", "84500", branch=branch,
                        reference="DEMO-OUT-1", user=user)
        open_obligation(company, "OUTGOING", "IRR", "500000000", "84300", branch=branch,
                        reference="DEMO-OUT-2", user=user)
        open_obligation(company, "INCOMING", "IRR", "1000000000", "85200", branch=branch,
                        reference="DEMO-IN-1", user=user)
        self.stdout.write(self.style.SUCCESS("Created 2 outgoing debts and 1 incoming credit"))
        self.stdout.write(self.style.SUCCESS("Demo tenant setup complete!"))
