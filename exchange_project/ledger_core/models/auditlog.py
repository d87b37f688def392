from django.conf import settings  # To access global project settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .entitymembership import Company


# ---------- Audit / Event log ----------
class AuditLog(models.Model):
    """Who changed which ledger row, and how. Written inside the same atomic block."""

    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Nullable for automated actions (celery drift check, management commands)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )
    # add_payment, cancel_payment, execute_settlement, apply_adjustment, ...
    action = models.CharField(max_length=50)
    # "Payment", "Settlement", "CashBalance", ...
    object_type = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    # before/after details, decimals stored as strings
    changes = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "user"], name="auditlog_company_user_idx"),
            models.Index(fields=["company", "created_at"], name="auditlog_company_created_idx"),
        ]

    def __str__(self):
        time = self.created_at
        return f"[{time:%Y-%m-%d %H:%M}] {self.user} {self.action} {self.object_type}({self.object_id})"

    def save(self, *args, **kwargs):
        # audit rows are append-only
        if self.pk:
            raise ValidationError("Audit log entries cannot be modified.")
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
