from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .currency import Currency
from .entitymembership import Branch, Company


# ---------- Daily cash count ----------
class Reconciliation(models.Model):
    """
    Physically counted cash vs. what the ledger expects.
    variance = closing_balance - expected_balance. Created once, never edited.
    """
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    branch = models.ForeignKey(
        Branch, null=True, blank=True, on_delete=models.PROTECT,
        related_name="reconciliations")
    date = models.DateField()
    currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="+")

    opening_balance = models.DecimalField(max_digits=24, decimal_places=6)
    closing_balance = models.DecimalField(max_digits=24, decimal_places=6)
    expected_balance = models.DecimalField(max_digits=24, decimal_places=6)
    variance = models.DecimalField(max_digits=24, decimal_places=6)

    # {"USD": "1200.00", "EUR": "300"} as counted
    currency_breakdown = models.JSONField(default=dict, blank=True)
    # {"USD": "-50.00", ...} counted minus computed, per currency
    breakdown_variance = models.JSONField(default=dict, blank=True)
    # |variance| above the configured threshold; informational only
    is_breached = models.BooleanField(default=False)

    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        ordering = ["-date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "branch", "date", "currency"],
                name="uq_reconciliation_branch_date_currency",
            ),
            # company-level counts (NULL branch) are unique too
            models.UniqueConstraint(
                fields=["company", "date", "currency"],
                condition=models.Q(branch__isnull=True),
                name="uq_reconciliation_hq_date_currency",
            ),
        ]
        indexes = [models.Index(fields=["company", "date"], name="recon_company_date_idx")]

    def __str__(self):
        where = self.branch.code if self.branch_id else "HQ"
        return f"Recon {where} {self.date} {self.currency_id}: {self.variance}"

    def clean(self):
        if self.branch_id and self.branch.company_id != self.company_id:
            raise ValidationError("Branch must belong to the same company.")

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("Reconciliations are immutable.")
        self.full_clean()
        return super().save(*args, **kwargs)
