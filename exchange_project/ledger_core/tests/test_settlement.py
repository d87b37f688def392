import datetime
from decimal import Decimal
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import ProtectedError, Sum
from django.test import TestCase
from django.utils import timezone
from ..exceptions import NotFoundError, StateError, ValidationError
from ..models import Obligation, Settlement
from ..services.settlement import (auto_settle, cancel_obligation, execute_settlement,
                                   obligation_from_transaction, open_obligation,
                                   settlement_history, suggest_settlement, unsettled_summary)
from .utils import make_currencies, make_tenant, make_transaction


class SettlementTests(TestCase):
    def setUp(self):
        self.ccy = make_currencies()
        self.company, self.branch, self.user = make_tenant("zahedan", self.ccy["USD"], username="dealer")

    def debt(self, amount, rate="1", currency="USD", days_old=0):
        ob = open_obligation(self.company, "OUTGOING", currency, amount, rate, user=self.user)
        if days_old:
            Obligation.objects.filter(pk=ob.pk).update(
                created_at=timezone.now() - datetime.timedelta(days=days_old))
            ob.refresh_from_db()
        return ob

    def credit(self, amount, rate="1", currency="USD"):
        return open_obligation(self.company, "INCOMING", currency, amount, rate, user=self.user)

    def test_fifo_fills_oldest_debt_first(self):
        older = self.debt("600", days_old=3)
        newer = self.debt("500")
        incoming = self.credit("1000")

        result = auto_settle(incoming.pk, strategy="FIFO", user=self.user, company=self.company)

        self.assertEqual(result.settlement_count, 2)
        self.assertEqual([s.amount for s in result.settlements], [Decimal("600"), Decimal("400")])
        self.assertEqual(result.total_settled, Decimal("1000"))
        self.assertEqual(result.remaining, Decimal("0"))
        older.refresh_from_db()
        newer.refresh_from_db()
        incoming.refresh_from_db()
        self.assertEqual(older.status, "SETTLED")
        self.assertIsNotNone(older.settled_at)
        self.assertEqual(newer.status, "PARTIAL")
        self.assertEqual(newer.unsettled, Decimal("100"))
        self.assertEqual(incoming.status, "SETTLED")

    def test_lifo_fills_newest_debt_first(self):
        older = self.debt("600", days_old=3)
        newer = self.debt("500")
        incoming = self.credit("700")

        result = auto_settle(incoming.pk, strategy="LIFO", company=self.company)

        self.assertEqual([s.outgoing_id for s in result.settlements], [newer.pk, older.pk])
        self.assertEqual([s.amount for s in result.settlements], [Decimal("500"), Decimal("200")])

    def test_best_rate_prefers_widest_margin(self):
        self.debt("500", rate="1.30", days_old=10)
        cheap = self.debt("500", rate="1.20")
        incoming = self.credit("500", rate="1.25")

        plan = suggest_settlement(incoming.pk, strategy="BEST_RATE", company=self.company)

        self.assertEqual(plan[0].outgoing.pk, cheap.pk)
        self.assertEqual(plan[0].amount, Decimal("500"))
        self.assertEqual(plan[0].estimated_profit, Decimal("16.666667"))
        self.assertEqual(len(plan), 1)

    def test_suggestions_do_not_write(self):
        self.debt("600", days_old=40)
        self.debt("500")
        incoming = self.credit("1000")

        plan = suggest_settlement(incoming.pk, company=self.company)
        limited = suggest_settlement(incoming.pk, limit=1, company=self.company)

        self.assertEqual(len(plan), 2)
        self.assertEqual(len(limited), 1)
        self.assertEqual(plan[0].days_outstanding, 40)
        # 50 base + 30 age cap + 10 for clearing the debt, no margin at equal rates
        self.assertEqual(plan[0].match_score, Decimal("90.00"))
        self.assertEqual(plan[0].reason, "Oldest debt, outstanding for over 30 days")
        self.assertFalse(Settlement.objects.exists())

    def test_auto_settle_without_candidates_is_empty(self):
        self.debt("100", currency="EUR")
        incoming = self.credit("1000")

        result = auto_settle(incoming.pk, company=self.company)

        self.assertEqual(result.settlement_count, 0)
        self.assertEqual(result.total_settled, Decimal("0"))
        self.assertEqual(result.remaining, Decimal("1000"))

    def test_execute_settlement_checks(self):
        debt = self.debt("100")
        eur_debt = self.debt("100", currency="EUR")
        incoming = self.credit("150")

        with self.assertRaises(ValidationError):
            execute_settlement(debt.pk, incoming.pk, "101", company=self.company)
        with self.assertRaises(ValidationError):
            execute_settlement(debt.pk, incoming.pk, "0", company=self.company)
        with self.assertRaises(ValidationError):
            execute_settlement(eur_debt.pk, incoming.pk, "10", company=self.company)
        # sides swapped
        with self.assertRaises(ValidationError):
            execute_settlement(incoming.pk, debt.pk, "10", company=self.company)
        with self.assertRaises(NotFoundError):
            execute_settlement(debt.pk, 999999, "10", company=self.company)

        settlement = execute_settlement(debt.pk, incoming.pk, "100", user=self.user,
                                        notes="manual match", company=self.company)
        self.assertEqual(settlement.profit, Decimal("0"))
        self.assertEqual(settlement.executed_by, self.user)

        # debt is closed now
        with self.assertRaises(StateError):
            execute_settlement(debt.pk, incoming.pk, "10", company=self.company)

    def test_amount_larger_than_remaining_credit_is_rejected(self):
        debt = self.debt("500")
        incoming = self.credit("200")
        with self.assertRaises(ValidationError):
            execute_settlement(debt.pk, incoming.pk, "300", company=self.company)

    def test_settlements_never_exceed_obligation(self):
        debt = self.debt("100")
        for _ in range(3):
            incoming = self.credit("40")
            if debt.unsettled > 0:
                auto_settle(incoming.pk, company=self.company)
            debt.refresh_from_db()

        total = Settlement.objects.filter(outgoing=debt).aggregate(t=Sum("amount"))["t"]
        self.assertEqual(total, Decimal("100"))
        self.assertEqual(debt.status, "SETTLED")
        self.assertEqual(len(settlement_history(debt.pk, company=self.company)), 3)

    def test_cancelled_obligations_are_skipped_and_frozen(self):
        debt = self.debt("100")
        cancel_obligation(debt.pk, "partner withdrew", company=self.company)
        incoming = self.credit("100")

        self.assertEqual(auto_settle(incoming.pk, company=self.company).settlement_count, 0)
        with self.assertRaises(StateError):
            execute_settlement(debt.pk, incoming.pk, "10", company=self.company)
        with self.assertRaises(StateError):
            cancel_obligation(debt.pk, "again", company=self.company)

    def test_settled_obligation_cannot_be_cancelled_or_deleted(self):
        debt = self.debt("100")
        incoming = self.credit("50")
        execute_settlement(debt.pk, incoming.pk, "50", company=self.company)

        with self.assertRaises(StateError):
            cancel_obligation(debt.pk, "oops", company=self.company)
        with self.assertRaises(ProtectedError), transaction.atomic():
            debt.delete()
        settled = Settlement.objects.get(outgoing=debt)
        with self.assertRaises(DjangoValidationError), transaction.atomic():
            settled.delete()
        self.assertTrue(Settlement.objects.filter(pk=settled.pk).exists())

    def test_outgoing_obligation_cannot_be_auto_settled(self):
        debt = self.debt("100")
        with self.assertRaises(ValidationError):
            auto_settle(debt.pk, company=self.company)
        with self.assertRaises(ValidationError):
            suggest_settlement(debt.pk, strategy="RANDOM", company=self.company)

    def test_other_tenant_cannot_match(self):
        other, _, _ = make_tenant("bam", self.ccy["USD"])
        debt = self.debt("100")
        incoming = self.credit("100")
        with self.assertRaises(NotFoundError):
            execute_settlement(debt.pk, incoming.pk, "10", company=other)
        with self.assertRaises(NotFoundError):
            auto_settle(incoming.pk, company=other)

    def test_foreign_outgoing_debt_is_not_found(self):
        other, _, _ = make_tenant("zabol", self.ccy["USD"])
        foreign_debt = open_obligation(other, "OUTGOING", "USD", "100", "1")
        incoming = self.credit("100")

        with self.assertRaises(NotFoundError) as ctx:
            execute_settlement(foreign_debt.pk, incoming.pk, "10", company=self.company)
        self.assertEqual(ctx.exception.field, "outgoing_id")
        self.assertFalse(Settlement.objects.exists())

    def test_obligation_from_transaction(self):
        tx = make_transaction(self.company, self.branch, self.ccy["IRR"], "120000000", reference="TX-9")
        ob = obligation_from_transaction(tx.pk, "OUTGOING", "84500", company=self.company)

        self.assertEqual(ob.amount, Decimal("120000000"))
        self.assertEqual(ob.currency_id, "IRR")
        self.assertEqual(ob.reference, "TX-9")
        self.assertEqual(ob.branch, self.branch)
        with self.assertRaises(StateError):
            obligation_from_transaction(tx.pk, "OUTGOING", "84500", company=self.company)

    def test_open_obligation_validation(self):
        for kwargs in (
            {"direction": "SIDEWAYS", "amount": "1", "rate": "1"},
            {"direction": "INCOMING", "amount": "-1", "rate": "1"},
            {"direction": "INCOMING", "amount": "1", "rate": "0"},
        ):
            with self.subTest(**kwargs):
                with self.assertRaises(ValidationError):
                    open_obligation(self.company, currency="USD", **kwargs)

    def test_oversized_reference_is_a_field_error(self):
        with self.assertRaises(ValidationError) as ctx:
            open_obligation(self.company, "OUTGOING", "USD", "10", "1", reference="x" * 65)
        self.assertEqual(ctx.exception.field, "reference")
        self.assertFalse(Obligation.objects.exists())

    def test_unsettled_summary(self):
        self.debt("600", days_old=3)
        self.debt("500", days_old=20)
        self.debt("50", currency="EUR", days_old=45)
        incoming = self.credit("100")
        auto_settle(incoming.pk, company=self.company)

        summary = unsettled_summary(self.company)

        by_status = {(row["status"], row["currency_id"]): row for row in summary["by_status"]}
        self.assertEqual(by_status[("PENDING", "USD")]["count"], 1)
        self.assertEqual(by_status[("PARTIAL", "USD")]["remaining"], Decimal("400"))
        buckets = {b["bucket"]: b for b in summary["by_age"]}
        self.assertEqual(buckets["0-7 days"]["remaining"], {"USD": Decimal("600")})
        self.assertEqual(buckets["15-30 days"]["remaining"], {"USD": Decimal("400")})
        self.assertEqual(buckets["30+ days"]["count"], 1)
