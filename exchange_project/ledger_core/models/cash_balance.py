from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .currency import Currency
from .entitymembership import Branch, Company


# ---------- Cash balance per (branch, currency) ----------
class CashBalance(models.Model):
    """
    Materialised cash position of one branch in one currency.
    Always recomputable from payments + adjustments:
        balance = auto_calculated_balance + manual_adjustment
    """
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # NULL branch = company-level (head office) drawer
    branch = models.ForeignKey(
        Branch, null=True, blank=True, on_delete=models.CASCADE,
        related_name="cash_balances")
    currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="+")

    # Fold of completed cash payments
    auto_calculated_balance = models.DecimalField(
        max_digits=24, decimal_places=6, default=Decimal("0"))
    # Fold of adjustment deltas
    manual_adjustment = models.DecimalField(
        max_digits=24, decimal_places=6, default=Decimal("0"))
    balance = models.DecimalField(
        max_digits=24, decimal_places=6, default=Decimal("0"))

    # bumped on every write; stale writers are rejected
    version = models.PositiveIntegerField(default=0)
    last_calculated_at = models.DateTimeField(null=True, blank=True)
    last_adjusted_at = models.DateTimeField(null=True, blank=True)
    last_updated = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        constraints = [
            # one row per (branch, currency)
            models.UniqueConstraint(
                fields=["company", "branch", "currency"],
                name="uq_cash_balance_branch_currency",
            ),
            # the company-level row is unique as well (NULLs are distinct)
            models.UniqueConstraint(
                fields=["company", "currency"],
                condition=models.Q(branch__isnull=True),
                name="uq_cash_balance_company_currency",
            ),
        ]
        indexes = [models.Index(fields=["company", "currency"], name="cashbal_company_ccy_idx")]

    def __str__(self):
        where = self.branch.code if self.branch_id else "HQ"
        return f"{where} {self.currency_id}: {self.balance}"

    def clean(self):
        if self.branch_id and self.branch.company_id != self.company_id:
            raise ValidationError("Branch must belong to the same company.")


# ---------- Manual adjustment ----------
class Adjustment(models.Model):
    """Append-only manual correction. Superseded by new rows, never edited."""
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    cash_balance = models.ForeignKey(
        CashBalance, on_delete=models.PROTECT, related_name="adjustments")
    # Positive or negative; never zero
    delta = models.DecimalField(max_digits=24, decimal_places=6)
    reason = models.TextField()
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    # snapshot of the balance around the adjustment, for the audit trail
    balance_before = models.DecimalField(max_digits=24, decimal_places=6)
    balance_after = models.DecimalField(max_digits=24, decimal_places=6)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["company", "created_at"], name="adj_company_created_idx")]
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(delta=0), name="adjustment_nonzero_delta"),
        ]

    def __str__(self):
        return f"Adj {self.delta:+} on {self.cash_balance} ({self.reason})"

    def save(self, *args, **kwargs):
        # append-only
        if self.pk:
            raise ValidationError("Adjustments are immutable; record a new one instead.")
        self.full_clean()
        return super().save(*args, **kwargs)
