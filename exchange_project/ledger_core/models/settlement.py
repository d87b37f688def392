from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .entitymembership import Company
from .obligation import Obligation


# ---------- Settlement (one allocation) ----------
class Settlement(models.Model):
    """Incoming credit allocated against an outgoing debt. Never edited."""
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    outgoing = models.ForeignKey(
        Obligation, on_delete=models.PROTECT, related_name="settlements_as_outgoing")
    incoming = models.ForeignKey(
        Obligation, on_delete=models.PROTECT, related_name="settlements_as_incoming")
    amount = models.DecimalField(max_digits=24, decimal_places=6)

    # Both rates frozen at execution time
    outgoing_rate = models.DecimalField(max_digits=24, decimal_places=8)
    incoming_rate = models.DecimalField(max_digits=24, decimal_places=8)
    # amount/outgoing_rate - amount/incoming_rate
    profit = models.DecimalField(max_digits=24, decimal_places=6)

    notes = models.TextField(blank=True, default="")
    executed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)
    executed_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        ordering = ["executed_at", "id"]
        indexes = [models.Index(fields=["company", "executed_at"], name="settlement_company_exec_idx")]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0), name="settlement_positive_amount"),
        ]

    def __str__(self):
        return f"Settle {self.amount} in#{self.incoming_id} → out#{self.outgoing_id}"

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("Settlements are immutable.")
        self.full_clean()
        return super().save(*args, **kwargs)
