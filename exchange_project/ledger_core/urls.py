from django.urls import path
from . import views

app_name = "ledger"

urlpatterns = [
    # payments / drawdowns
    path("transactions/<int:transaction_id>/payments/", views.transaction_payments_view, name="transaction-payments"),
    path("transactions/<int:transaction_id>/complete/", views.complete_transaction_view, name="complete-transaction"),
    path("transactions/<int:transaction_id>/cancel/", views.cancel_transaction_view, name="cancel-transaction"),
    path("transactions/<int:transaction_id>/summary/", views.transaction_summary_view, name="transaction-summary"),
    path("transactions/pending/", views.pending_transactions_view, name="pending-transactions"),
    path("batch-payments/preview/", views.batch_preview_view, name="preview-batch-payment"),
    path("batch-payments/", views.batch_payment_view, name="process-batch-payment"),
    path("payments/<int:payment_id>/edit/", views.edit_payment_view, name="edit-payment"),
    path("payments/<int:payment_id>/cancel/", views.cancel_payment_view, name="cancel-payment"),
    path("payments/<int:payment_id>/history/", views.payment_history_view, name="payment-history"),
    # balances
    path("balances/", views.balance_list_view, name="balances"),
    path("balances/<str:currency>/", views.balance_view, name="balance"),
    path("adjustments/", views.create_adjustment_view, name="create-adjustment"),
    # settlement
    path("obligations/", views.open_obligation_view, name="open-obligation"),
    path("obligations/unsettled/", views.unsettled_summary_view, name="unsettled-summary"),
    path("obligations/<int:incoming_id>/suggestions/", views.suggest_settlement_view, name="suggest-settlement"),
    path("obligations/<int:incoming_id>/auto-settle/", views.auto_settle_view, name="auto-settle"),
    path("settlements/", views.execute_settlement_view, name="execute-settlement"),
    # reconciliation
    path("reconciliations/", views.create_reconciliation_view, name="create-reconciliation"),
    path("reconciliations/expected/", views.expected_balance_view, name="expected-balance"),
    path("reconciliations/variance/", views.variance_report_view, name="variance-report"),
]
