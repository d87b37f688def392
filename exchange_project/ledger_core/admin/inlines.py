from django.contrib import admin

from ledger_core.models import Payment, PaymentEdit, TransactionEdit

# ---------- Read-only history inlines ----------


class PaymentInline(admin.TabularInline):
    """Payments on the Transaction page (changes go through the services)."""

    model = Payment
    extra = 0
    fields = (
        "amount",
        "currency",
        "exchange_rate",
        "amount_in_base",
        "payment_method",
        "status",
        "paid_at",
    )
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


class TransactionEditInline(admin.TabularInline):
    model = TransactionEdit
    extra = 0
    fields = ("previous_status", "new_status", "reason", "performed_by", "created_at")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class PaymentEditInline(admin.TabularInline):
    model = PaymentEdit
    extra = 0
    fields = (
        "previous_amount",
        "new_amount",
        "previous_exchange_rate",
        "new_exchange_rate",
        "previous_method",
        "new_method",
        "reason",
        "edited_by",
        "edited_at",
    )
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False
