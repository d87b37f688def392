from .auditlog import AuditLogAdmin
from .forms import UserAdminChangeForm, UserAdminCreationForm
from .inlines import PaymentEditInline, PaymentInline, TransactionEditInline
from .ledger import (AdjustmentAdmin, CashBalanceAdmin, CurrencyAdmin,
                     ObligationAdmin, PaymentAdmin, ReconciliationAdmin,
                     SettlementAdmin, TransactionAdmin)
from .membership import (BranchAdmin, CompanyAdmin, EntityMembershipAdmin,
                         UserAdmin)
from .mixins import TenantAdminMixin
