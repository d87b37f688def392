from django.contrib import admin

from ledger_core.models import (Adjustment, CashBalance, Currency, Obligation,
                                Payment, Reconciliation, Settlement,
                                Transaction)

from .inlines import PaymentEditInline, PaymentInline, TransactionEditInline
from .mixins import TenantAdminMixin
from .ReadOnly import ReadOnlyAdmin


@admin.register(Currency)
class CurrencyAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "symbol", "decimal_places")
    search_fields = ("code", "name")
    ordering = ("code",)


# Ledger state only changes through the services (payments, adjustments,
# settlements); the admin is a window onto it.

@admin.register(Transaction)
class TransactionAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "id", "reference", "branch", "total_received", "received_currency",
        "total_paid", "remaining_balance", "payment_status", "created_at",
    )
    search_fields = ("reference", "customer_ref")
    inlines = [PaymentInline, TransactionEditInline]

    def get_list_filter(self, request):
        return ("payment_status", "received_currency", "branch")


@admin.register(Payment)
class PaymentAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "id", "transaction", "amount", "currency", "exchange_rate",
        "amount_in_base", "payment_method", "status", "paid_at",
    )
    search_fields = ("receipt_number", "transaction__reference")
    inlines = [PaymentEditInline]

    def get_list_filter(self, request):
        return ("status", "payment_method", "currency")


@admin.register(CashBalance)
class CashBalanceAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "branch", "currency", "auto_calculated_balance",
        "manual_adjustment", "balance", "version", "last_updated",
    )


@admin.register(Adjustment)
class AdjustmentAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "id", "cash_balance", "delta", "balance_before",
        "balance_after", "reason", "performed_by", "created_at",
    )
    search_fields = ("reason",)


@admin.register(Obligation)
class ObligationAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "id", "reference", "direction", "currency", "amount",
        "settled_amount", "rate", "status", "created_at",
    )
    search_fields = ("reference",)


@admin.register(Settlement)
class SettlementAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "id", "incoming", "outgoing", "amount", "profit", "executed_by", "executed_at",
    )


@admin.register(Reconciliation)
class ReconciliationAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "date", "branch", "currency", "opening_balance", "closing_balance",
        "expected_balance", "variance", "is_breached",
    )
    date_hierarchy = "date"
