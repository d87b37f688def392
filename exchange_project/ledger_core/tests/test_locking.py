from decimal import Decimal
from unittest import mock
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.test import SimpleTestCase, TestCase, override_settings
from ..exceptions import ConcurrencyConflict, StateError, ValidationError, model_errors
from ..models import AuditLog, Payment
from ..money import quantize_money, to_decimal, tolerance_band
from ..services.locking import retry_on_conflict
from ..services.payment import add_payment
from .utils import make_currencies, make_tenant, make_transaction


@mock.patch("ledger_core.services.locking.time.sleep")
class RetryOnConflictTests(SimpleTestCase):
    def test_conflicts_are_retried_until_success(self, sleep):
        calls = mock.Mock(side_effect=[ConcurrencyConflict("busy"), ConcurrencyConflict("busy"), "done"])
        calls.__name__ = "post_payment"
        wrapped = retry_on_conflict(calls)

        self.assertEqual(wrapped(), "done")
        self.assertEqual(calls.call_count, 3)
        self.assertEqual(sleep.call_count, 2)

    @override_settings(LEDGER={"CONFLICT_RETRIES": 2})
    def test_gives_up_after_configured_retries(self, sleep):
        calls = mock.Mock(side_effect=ConcurrencyConflict("busy"))
        calls.__name__ = "post_payment"
        wrapped = retry_on_conflict(calls)

        with self.assertRaises(ConcurrencyConflict):
            wrapped()
        self.assertEqual(calls.call_count, 3)

    def test_other_errors_are_not_retried(self, sleep):
        calls = mock.Mock(side_effect=StateError("closed"))
        calls.__name__ = "post_payment"
        wrapped = retry_on_conflict(calls)

        with self.assertRaises(StateError):
            wrapped()
        self.assertEqual(calls.call_count, 1)
        sleep.assert_not_called()


class RetryInsideTransactionTests(TestCase):
    @mock.patch("ledger_core.services.locking.time.sleep")
    def test_no_retry_inside_outer_atomic_block(self, sleep):
        # TestCase wraps every test in atomic()
        calls = mock.Mock(side_effect=ConcurrencyConflict("busy"))
        calls.__name__ = "post_payment"
        with self.assertRaises(ConcurrencyConflict):
            retry_on_conflict(calls)()
        self.assertEqual(calls.call_count, 1)
        sleep.assert_not_called()


class MoneyTests(SimpleTestCase):
    def test_to_decimal_accepts_text_int_and_decimal(self):
        self.assertEqual(to_decimal("12.5"), Decimal("12.5"))
        self.assertEqual(to_decimal(7), Decimal("7"))
        self.assertEqual(to_decimal(Decimal("0.000001")), Decimal("0.000001"))
        self.assertEqual(to_decimal(" 3 "), Decimal("3"))

    def test_to_decimal_rejects(self):
        for bad in (1.5, True, None, "", "abc", "NaN", "-Infinity", "0.0000001",
                    "1" + "0" * 18):
            with self.subTest(value=bad):
                with self.assertRaises(ValidationError):
                    to_decimal(bad)

    def test_rounding_and_band(self):
        self.assertEqual(quantize_money(Decimal("42050000.4"), 0), Decimal("42050000"))
        self.assertEqual(quantize_money(Decimal("1.005"), 2), Decimal("1.01"))
        self.assertEqual(tolerance_band(Decimal("120000000"), 0, Decimal("2")), Decimal("2400000"))
        # never tighter than one minor unit
        self.assertEqual(tolerance_band(Decimal("0.10"), 2, Decimal("2")), Decimal("0.01"))


class ModelErrorTranslationTests(SimpleTestCase):
    def test_field_errors_keep_their_field(self):
        with self.assertRaises(ValidationError) as ctx, model_errors():
            raise DjangoValidationError({"reference": ["Ensure this value has at most 64 characters."]})
        self.assertEqual(ctx.exception.field, "reference")
        self.assertEqual(ctx.exception.status, 400)
        self.assertIn("at most 64 characters", ctx.exception.message)

    def test_non_field_errors_have_no_field(self):
        with self.assertRaises(ValidationError) as ctx, model_errors():
            raise DjangoValidationError("Payment and transaction must belong to the same company.")
        self.assertIsNone(ctx.exception.field)
        with self.assertRaises(ValidationError) as ctx, model_errors():
            raise DjangoValidationError({"__all__": ["Branch must belong to the same company."]})
        self.assertIsNone(ctx.exception.field)


class HistoryProtectionTests(TestCase):
    def setUp(self):
        ccy = make_currencies()
        self.company, self.branch, self.user = make_tenant("yazd", ccy["USD"], username="clerk")
        self.tx = make_transaction(self.company, self.branch, ccy["USD"], "100")

    def test_payments_and_audit_rows_cannot_be_deleted(self):
        payment = add_payment(self.tx.pk, "10", "USD", user=self.user, company=self.company)
        entry = AuditLog.objects.filter(action="add_payment").first()
        # each refused delete rolls back its own savepoint
        with self.assertRaises(DjangoValidationError), transaction.atomic():
            payment.delete()
        with self.assertRaises(DjangoValidationError), transaction.atomic():
            entry.delete()
        self.assertTrue(Payment.objects.filter(pk=payment.pk).exists())

    def test_audit_rows_are_append_only(self):
        add_payment(self.tx.pk, "10", "USD", user=self.user, company=self.company)
        entry = AuditLog.objects.get(action="add_payment")
        entry.action = "tampered"
        with self.assertRaises(DjangoValidationError):
            entry.save()
