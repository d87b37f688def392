from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import ObligationManager
from .currency import Currency
from .entitymembership import Branch, Company
from .transaction import Transaction

DIRECTION_CHOICES = [
    ("INCOMING", "Incoming credit"),  # remittance received, to be paid out
    ("OUTGOING", "Outgoing debt"),    # remittance owed to a partner
]

OBLIGATION_STATUS = [
    ("PENDING", "Pending"),
    ("PARTIAL", "Partially settled"),
    ("SETTLED", "Settled"),
    ("CANCELLED", "Cancelled"),
]


# ---------- Obligation awaiting settlement ----------
class Obligation(models.Model):
    """
    Outstanding amount in one direction.
    unsettled = amount - settled_amount, never negative.
    """
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    branch = models.ForeignKey(
        Branch, null=True, blank=True, on_delete=models.PROTECT)
    # Optional source transaction (pending remittance)
    transaction = models.ForeignKey(
        Transaction, null=True, blank=True, on_delete=models.PROTECT,
        related_name="obligations")
    reference = models.CharField(max_length=64, blank=True, default="")

    direction = models.CharField(max_length=8, choices=DIRECTION_CHOICES)
    currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="+")
    amount = models.DecimalField(max_digits=24, decimal_places=6)
    settled_amount = models.DecimalField(
        max_digits=24, decimal_places=6, default=Decimal("0"))
    # Rate recorded when the obligation was created (base per unit)
    rate = models.DecimalField(max_digits=24, decimal_places=8)

    status = models.CharField(
        max_length=10, choices=OBLIGATION_STATUS, default="PENDING")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.TextField(null=True, blank=True)

    objects = ObligationManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "direction", "currency", "status"], name="obligation_match_idx"),
            models.Index(fields=["company", "created_at"], name="oblig_company_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0) & models.Q(rate__gt=0),
                name="obligation_positive_amount_rate",
            ),
            # Σ settlements never exceed the obligation
            models.CheckConstraint(
                condition=models.Q(settled_amount__gte=0)
                & models.Q(settled_amount__lte=models.F("amount")),
                name="obligation_settled_within_amount",
            ),
        ]

    def __str__(self):
        return f"{self.direction} {self.amount} {self.currency_id} ({self.status})"

    @property
    def unsettled(self):
        return self.amount - self.settled_amount

    def clean(self):
        if self.branch_id and self.branch.company_id != self.company_id:
            raise ValidationError("Branch must belong to the same company.")
        if self.transaction_id and self.transaction.company_id != self.company_id:
            raise ValidationError("Transaction must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
