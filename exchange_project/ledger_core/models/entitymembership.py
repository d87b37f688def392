from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager, TenantUserManager


# ---------- Tenant / Company ----------
class Company(models.Model):

    """Tenant: one exchange business. Nothing is ever matched across tenants."""
    name = models.CharField(max_length=200)

    slug = models.SlugField(  # A URL-friendly identifier
        max_length=80, unique=True  # no two companies can have the same slug
    )

    # Currency used for reconciliation when a branch does not say otherwise
    default_currency = models.ForeignKey(
        "Currency",
        # don't allow deleting a currency that a company depends on
        on_delete=models.PROTECT,
        related_name="companies",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "companies"

    def __str__(self):
        return self.name


# ---------- Branch ----------
class Branch(models.Model):
    """A physical location holding cash. Opaque FK target for the ledger."""
    company = models.ForeignKey(
        Company, on_delete=models.CASCADE, related_name="branches")
    name = models.CharField(max_length=200)
    code = models.CharField(max_length=20)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        verbose_name_plural = "branches"
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_branch_code"
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})"


# ---------- Custom User ----------
class User(AbstractUser):
    """
    Actor identity attached to every mutating call.
    AUTH_USER_MODEL = "ledger_core.User" must be set before the first migrate.
    """
    # Tenant used when the session does not pick one explicitly
    default_company = models.ForeignKey(
        "Company",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="default_users",
    )
    # Branch the user works at (cash drawer they reconcile)
    default_branch = models.ForeignKey(
        "Branch",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="default_users",
    )

    phone = models.CharField(max_length=32, blank=True)

    objects = TenantUserManager()

    class Meta:
        indexes = [models.Index(fields=["default_company"], name="user_default_company_idx")]

    def __str__(self):
        return self.get_full_name() or self.username


# ---------- EntityMembership ----------
class EntityMembership(models.Model):
    """Bridge between User and Company; carries the user's role."""

    ROLE_CHOICES = [
        ("owner", "Owner"),
        ("manager", "Manager"),
        ("cashier", "Cashier"),
        ("viewer", "Viewer"),  # read-only access
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    company = models.ForeignKey(
        "Company", on_delete=models.CASCADE, related_name="memberships"
    )
    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        default="viewer",
    )
    # Suspend access without deleting the record
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        # one user can only have one membership per company
        constraints = [
            models.UniqueConstraint(
                fields=["user", "company"], name="uq_user_company_membership"
            ),
        ]
        indexes = [
            models.Index(fields=["company", "user"], name="membership_company_user_idx"),
        ]

    def __str__(self):
        return f"{self.user} @ {self.company} ({self.role})"

    def clean(self):
        # A user's default branch must belong to a company they are a member of
        branch = self.user.default_branch if self.user_id else None
        if branch is None:
            return
        # existing memberships, excluding this record if updating
        member_of = set(
            self.user.memberships.exclude(pk=self.pk).values_list("company_id", flat=True)
        )
        member_of.add(self.company_id)
        if branch.company_id not in member_of:
            raise ValidationError(
                f"Default branch {branch} must belong to one of the user's companies."
            )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
