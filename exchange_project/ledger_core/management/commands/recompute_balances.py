from django.core.management.base import BaseCommand, CommandError
from ledger_core.models import Company
from ledger_core.services.balance import refresh_all_balances


class Command(BaseCommand):
    help = "Rebuild cash balances from payments and adjustments and report drift."

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            help="Slug of one company; all companies when omitted.",
        )

    def handle(self, *args, **options):
        companies = Company.objects.order_by("pk")
        if options["company"]:
            companies = companies.filter(slug=options["company"])
            if not companies.exists():
                raise CommandError(f"No company with slug {options['company']!r}")

        total = 0
        for company in companies:
            drifted = refresh_all_balances(company)
            for row, drift in drifted:
                self.stdout.write(self.style.WARNING(f"{company.slug}: {row} drifted by {drift}"))
            total += len(drifted)
            self.stdout.write(f"{company.slug}: checked, {len(drifted)} corrected")

        style = self.style.SUCCESS if total == 0 else self.style.WARNING
        self.stdout.write(style(f"Done: {total} balance row(s) corrected"))
