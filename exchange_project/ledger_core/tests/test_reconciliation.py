import datetime
from decimal import Decimal
from django.core.exceptions import ValidationError as DjangoValidationError
from django.test import TestCase, override_settings
from django.utils import timezone
from ..exceptions import StateError, ValidationError
from ..models import CashBalance, Reconciliation
from ..services.balance import apply_adjustment, get_balance
from ..services.payment import add_payment
from ..services.reconciliation import (create_reconciliation, get_expected_balance,
                                       get_variance_report, is_breach, reconciliation_history)
from .utils import make_currencies, make_tenant, make_transaction


class ReconciliationTests(TestCase):
    def setUp(self):
        self.ccy = make_currencies()
        self.company, self.branch, self.user = make_tenant("shiraz", self.ccy["USD"], username="auditor")
        self.today = timezone.localdate()
        apply_adjustment(self.company, self.branch, "USD", "1250", "opening float")

    def count(self, closing, date=None, **kwargs):
        return create_reconciliation(
            self.company, self.branch, date or self.today, "1000", closing, user=self.user, **kwargs)

    def test_shortfall_at_threshold_is_flagged(self):
        recon = self.count("1200")

        self.assertEqual(recon.expected_balance, Decimal("1250"))
        self.assertEqual(recon.variance, Decimal("-50"))
        self.assertTrue(recon.is_breached)
        self.assertEqual(recon.currency_id, "USD")
        self.assertEqual(recon.created_by, self.user)

    @override_settings(LEDGER={"VARIANCE_THRESHOLD": Decimal("60")})
    def test_shortfall_below_threshold_is_not_flagged(self):
        recon = self.count("1200")
        self.assertEqual(recon.variance, Decimal("-50"))
        self.assertFalse(recon.is_breached)

    def test_exact_count_has_no_variance(self):
        recon = self.count("1250")
        self.assertEqual(recon.variance, Decimal("0"))
        self.assertFalse(recon.is_breached)

    def test_breach_rule(self):
        self.assertFalse(is_breach(Decimal("0")))
        self.assertFalse(is_breach(Decimal("49.99")))
        self.assertTrue(is_breach(Decimal("50")))
        self.assertTrue(is_breach(Decimal("-75")))

    def test_one_count_per_branch_date_and_currency(self):
        self.count("1200")
        with self.assertRaises(StateError):
            self.count("1250")
        # another currency on the same day is fine
        self.count("0", currency="EUR")
        self.assertEqual(Reconciliation.objects.for_company(self.company).count(), 2)

    def test_breakdown_variance_per_currency(self):
        apply_adjustment(self.company, self.branch, "EUR", "300", "opening float")

        recon = self.count("1250", currency_breakdown={"usd": "1250", "EUR": "290"})

        self.assertEqual(Decimal(recon.breakdown_variance["USD"]), Decimal("0"))
        self.assertEqual(Decimal(recon.breakdown_variance["EUR"]), Decimal("-10"))
        self.assertEqual(recon.currency_breakdown, {"USD": "1250.000000", "EUR": "290.000000"})

    def test_invalid_input_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.count("1200", date="not-a-date")
        with self.assertRaises(ValidationError):
            self.count(1200.0)
        with self.assertRaises(ValidationError):
            self.count("1200", currency_breakdown={"XXX": "1"})
        with self.assertRaises(ValidationError):
            self.count("1200", currency_breakdown=["USD"])
        self.assertFalse(Reconciliation.objects.exists())

    def test_reconciliations_are_immutable(self):
        recon = self.count("1200")
        recon.notes = "edited"
        with self.assertRaises(DjangoValidationError):
            recon.save()

    def test_expected_balance_splits_cash_and_bank(self):
        tx = make_transaction(self.company, self.branch, self.ccy["USD"], "1000")
        add_payment(tx.pk, "100", "USD", company=self.company)
        add_payment(tx.pk, "40", "USD", method="BANK_TRANSFER",
                    details={"reference_id": "W1"}, company=self.company)

        rows = {r.currency: r for r in get_expected_balance(self.company, self.branch)}

        self.assertEqual(rows["USD"].cash, Decimal("1350"))
        self.assertEqual(rows["USD"].bank, Decimal("40"))
        self.assertEqual(rows["USD"].total, Decimal("1390"))

    def test_variance_report_and_history(self):
        yesterday = self.today - datetime.timedelta(days=1)
        old = self.today - datetime.timedelta(days=90)
        self.count("1250", date=yesterday)
        short = self.count("1200")
        self.count("1100", date=old)

        report = get_variance_report(self.company, days=30)
        self.assertEqual([r.pk for r in report], [short.pk])

        history = reconciliation_history(self.company, branch=self.branch, start=yesterday)
        self.assertEqual([r.date for r in history], [self.today, yesterday])

    def test_company_level_count(self):
        apply_adjustment(self.company, None, "USD", "5000", "vault")
        recon = create_reconciliation(self.company, None, self.today, "5000", "5000")
        self.assertIsNone(recon.branch)
        self.assertEqual(recon.variance, Decimal("0"))
        with self.assertRaises(StateError):
            create_reconciliation(self.company, None, self.today, "5000", "5000")

    def test_expected_balance_ignores_a_stale_cached_row(self):
        get_balance(self.company, self.branch, "USD")  # cached at 1250
        # another worker moves the row; our cache never hears about it
        CashBalance.objects.filter(company=self.company, currency="USD").update(
            balance=Decimal("1300"))
        self.assertEqual(get_balance(self.company, self.branch, "USD").balance, Decimal("1250"))

        recon = self.count("1300", currency_breakdown={"USD": "1300"})

        self.assertEqual(recon.expected_balance, Decimal("1300"))
        self.assertEqual(recon.variance, Decimal("0"))
        self.assertFalse(recon.is_breached)
        self.assertEqual(Decimal(recon.breakdown_variance["USD"]), Decimal("0"))
