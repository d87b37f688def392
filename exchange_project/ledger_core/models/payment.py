from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import PaymentManager, TenantManager
from .currency import Currency
from .entitymembership import Branch, Company
from .transaction import Transaction

PAYMENT_METHODS = [
    # Keeps payment method standardized across records
    ("CASH", "Cash"),
    ("BANK_TRANSFER", "Bank Transfer"),
    ("CARD", "Card"),
    ("CHEQUE", "Cheque"),
    ("ONLINE", "Online"),
    ("OTHER", "Other"),
]

PAYMENT_STATUS = [
    ("COMPLETED", "Completed"),
    ("CANCELLED", "Cancelled"),
]


# ---------- Payment (drawdown) ----------
class Payment(models.Model):
    """One drawdown against a transaction, possibly in another currency."""
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    transaction = models.ForeignKey(
        Transaction, on_delete=models.PROTECT, related_name="payments")
    # Branch whose cash drawer the payment touched
    branch = models.ForeignKey(
        Branch, null=True, blank=True, on_delete=models.PROTECT)

    amount = models.DecimalField(max_digits=24, decimal_places=6)
    currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="+")
    # payment currency -> transaction.received_currency; 1 when they match
    exchange_rate = models.DecimalField(
        max_digits=24, decimal_places=8, default=Decimal("1"))
    # amount * exchange_rate, rounded to the base currency's minor unit
    amount_in_base = models.DecimalField(max_digits=24, decimal_places=6)

    payment_method = models.CharField(
        max_length=20, choices=PAYMENT_METHODS, default="CASH")
    # method-specific fields (reference id, cheque number, card digits)
    details = models.JSONField(default=dict, blank=True)
    status = models.CharField(
        max_length=12, choices=PAYMENT_STATUS, default="COMPLETED")

    notes = models.TextField(null=True, blank=True)
    receipt_number = models.CharField(max_length=100, null=True, blank=True)

    paid_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="payments_made")
    paid_at = models.DateTimeField()

    # Edit tracking (full history lives in PaymentEdit)
    is_edited = models.BooleanField(default=False)
    edit_reason = models.TextField(null=True, blank=True)
    edited_at = models.DateTimeField(null=True, blank=True)

    # Cancellation
    cancel_reason = models.TextField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name="payments_cancelled")
    cancelled_at = models.DateTimeField(null=True, blank=True)

    objects = PaymentManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "transaction"], name="payment_company_tx_idx"),
            models.Index(fields=["company", "branch", "currency", "status"], name="payment_branch_ccy_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0) & models.Q(exchange_rate__gt=0),
                name="payment_positive_amount_rate",
            ),
            # a cancelled payment always says why
            models.CheckConstraint(
                condition=~models.Q(status="CANCELLED") | models.Q(cancel_reason__isnull=False),
                name="payment_cancel_has_reason",
            ),
        ]

    def __str__(self):
        return f"Payment #{self.pk} {self.amount} {self.currency_id} → {self.amount_in_base} ({self.status})"

    @property
    def is_active(self):
        return self.status == "COMPLETED"

    def clean(self):
        # Prevent cross-company contamination
        if self.transaction_id and self.transaction.company_id != self.company_id:
            raise ValidationError("Payment and transaction must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)


class PaymentEdit(models.Model):
    """One row per historical version of a payment."""
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    payment = models.ForeignKey(
        Payment, on_delete=models.PROTECT, related_name="edits")

    previous_amount = models.DecimalField(max_digits=24, decimal_places=6)
    previous_exchange_rate = models.DecimalField(max_digits=24, decimal_places=8)
    previous_amount_in_base = models.DecimalField(max_digits=24, decimal_places=6)
    previous_method = models.CharField(max_length=20, choices=PAYMENT_METHODS)

    new_amount = models.DecimalField(max_digits=24, decimal_places=6)
    new_exchange_rate = models.DecimalField(max_digits=24, decimal_places=8)
    new_amount_in_base = models.DecimalField(max_digits=24, decimal_places=6)
    new_method = models.CharField(max_length=20, choices=PAYMENT_METHODS)

    reason = models.TextField()
    edited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    edited_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        ordering = ["edited_at", "id"]

    def __str__(self):
        return f"Edit of payment #{self.payment_id}: {self.previous_amount} → {self.new_amount}"

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("Payment history rows are immutable.")
        return super().save(*args, **kwargs)
