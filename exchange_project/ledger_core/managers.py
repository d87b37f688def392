from django.db import models
from django.contrib.auth.base_user import BaseUserManager


# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):          # Add queryset helper
        return self.filter(company=company)  # Apply filter

    def for_branch(self, company, branch):
        # branch=None means company-wide rows
        qs = self.filter(company=company)
        if branch is None:
            return qs.filter(branch__isnull=True)
        return qs.filter(branch=branch)

    def active(self, company):
        return self.filter(
            company=company,  # enforce tenant scoping
            is_active=True,   # only fetch active records
        )
    # Enables query:
    # Branch.objects.active(request.company)


# Attach TenantQuerySet to .objects
class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    pass


class PaymentQuerySet(TenantQuerySet):
    def completed(self):
        # cancelled payments never count toward any total
        return self.filter(status="COMPLETED")

    def cash(self):
        return self.filter(payment_method="CASH")


class PaymentManager(models.Manager.from_queryset(PaymentQuerySet)):
    pass


class ObligationQuerySet(TenantQuerySet):
    def unsettled(self):
        # open obligations with something left to match
        return self.exclude(status="CANCELLED").filter(
            amount__gt=models.F("settled_amount"))


class ObligationManager(models.Manager.from_queryset(ObligationQuerySet)):
    pass


class TenantUserManager(BaseUserManager):
    """ Enforce rules around how users are created """

    use_in_migrations = True  # Allow Django to serialize this manager in migrations

    def get_queryset(self):
        return TenantQuerySet(self.model, using=self._db)

    def for_company(self, company):
        return self.get_queryset().filter(memberships__company=company)

    # Shared logic for both create_user() & create_superuser()
    def _create_user(self, username, email, password, **extra_fields):
        if not username:  # Username is required
            raise ValueError("The given username must be set")
        email = self.normalize_email(email)  # lowercases domain part
        user = self.model(username=username, email=email, **extra_fields)
        user.set_password(password)  # Password is hashed
        user.save(using=self._db)
        return user

    # Safe defaults for regular accounts
    def create_user(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(username, email, password, **extra_fields)

    # Superusers must always have full privileges
    def create_superuser(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        if extra_fields.get("is_staff") is not True or extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_staff=True and is_superuser=True")
        return self._create_user(username, email, password, **extra_fields)
