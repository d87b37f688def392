from django.core.exceptions import ValidationError
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .models import (Adjustment, AuditLog, Obligation, Payment, PaymentEdit,
                     Reconciliation, Settlement, TransactionEdit)

""" Ledger history is append-only: cancel, never delete."""


# pre_delete fires just before Django deletes a model instance;
# raising here aborts the delete (including cascades and admin deletes)
@receiver(pre_delete, sender=Payment)
def prevent_delete_payment(sender, instance, **kwargs):
    raise ValidationError("Payments cannot be deleted; cancel them with a reason.")


@receiver(pre_delete, sender=Settlement)
@receiver(pre_delete, sender=Adjustment)
@receiver(pre_delete, sender=Reconciliation)
@receiver(pre_delete, sender=PaymentEdit)
@receiver(pre_delete, sender=TransactionEdit)
@receiver(pre_delete, sender=AuditLog)
def prevent_delete_history(sender, instance, **kwargs):
    raise ValidationError(f"{sender.__name__} rows are immutable and cannot be deleted.")


"""Block obligation deletion once anything has been settled against it."""


@receiver(pre_delete, sender=Obligation)
def prevent_delete_settled_obligation(sender, instance, **kwargs):
    if instance.settled_amount or Settlement.objects.filter(outgoing=instance).exists() \
            or Settlement.objects.filter(incoming=instance).exists():
        raise ValidationError("Cannot delete an obligation with settlements.")
