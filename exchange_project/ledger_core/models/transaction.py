from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import StateError
from ..managers import TenantManager
from .currency import Currency
from .entitymembership import Branch, Company

PAYMENT_STATUS_CHOICES = [
    ("OPEN", "Open"),              # no active payments yet
    ("PARTIAL", "Partially paid"),  # at least one active payment
    ("FULLY_PAID", "Fully paid"),   # explicitly completed, terminal
    ("CANCELLED", "Cancelled"),     # blocks new payments, terminal
]


class Transaction(models.Model):
    """
    Ledger-relevant view of an exchange transaction.
    Created by the transaction collaborator; the payment tracker
    owns total_paid, remaining_balance and payment_status.
    """
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    branch = models.ForeignKey(
        Branch, null=True, blank=True, on_delete=models.PROTECT)
    # human-readable code from the front office, e.g. "TX-2025-000123"
    reference = models.CharField(max_length=64, null=True, blank=True)
    # opaque customer identifier (customer CRUD lives elsewhere)
    customer_ref = models.CharField(max_length=64, blank=True, default="")

    # What the client is owed, in the base (received) currency
    total_received = models.DecimalField(max_digits=24, decimal_places=6)
    received_currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="+")

    # Maintained by the payment tracker
    total_paid = models.DecimalField(
        max_digits=24, decimal_places=6, default=Decimal("0"))
    remaining_balance = models.DecimalField(
        max_digits=24, decimal_places=6, default=Decimal("0"))
    payment_status = models.CharField(
        max_length=12, choices=PAYMENT_STATUS_CHOICES, default="OPEN")
    # False = exactly one payment discharges the transaction
    allow_partial_payment = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(null=True, blank=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "payment_status"], name="tx_company_status_idx"),
            models.Index(fields=["company", "branch"], name="tx_company_branch_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "reference"], name="uq_transaction_company_ref"
            ),
            models.CheckConstraint(
                condition=models.Q(total_received__gt=0),
                name="tx_total_received_positive",
            ),
        ]

    def __str__(self):
        return f"Tx {self.reference or self.pk} {self.total_received} {self.received_currency_id} ({self.payment_status})"

    def clean(self):
        # Tenancy check: branch must belong to the same company
        if self.branch_id and self.branch.company_id != self.company_id:
            raise ValidationError("Branch must belong to the same company.")
        if self.total_received is not None and self.total_received <= 0:
            raise ValidationError("total_received must be positive")

    def save(self, *args, **kwargs):
        # A new transaction owes everything it received
        if not self.pk and not self.total_paid:
            self.remaining_balance = self.total_received
        self.full_clean()
        return super().save(*args, **kwargs)

    @property
    def is_terminal(self):
        return self.payment_status in ("FULLY_PAID", "CANCELLED")

    def transition_to(self, new_status):
        # Current state vs. allowed next states
        allowed = {
            "OPEN": ["PARTIAL", "CANCELLED"],
            "PARTIAL": ["OPEN", "FULLY_PAID", "CANCELLED"],
            "FULLY_PAID": [],  # irreversible through normal flow
            "CANCELLED": [],
        }
        if new_status == self.payment_status:
            return self
        if new_status not in allowed.get(self.payment_status, []):
            raise StateError(
                f"Cannot go from {self.payment_status} to {new_status}",
                field="payment_status",
            )
        self.payment_status = new_status
        return self


class TransactionEdit(models.Model):
    """Append-only status history for a transaction."""
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    transaction = models.ForeignKey(
        Transaction, on_delete=models.PROTECT, related_name="edits")
    previous_status = models.CharField(max_length=12, choices=PAYMENT_STATUS_CHOICES)
    new_status = models.CharField(max_length=12, choices=PAYMENT_STATUS_CHOICES)
    reason = models.TextField(blank=True, default="")
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.transaction_id}: {self.previous_status} → {self.new_status}"

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("Transaction history rows are immutable.")
        return super().save(*args, **kwargs)
