from .auditlog import AuditLog
from .cash_balance import Adjustment, CashBalance
from .currency import Currency
from .entitymembership import Branch, Company, EntityMembership, User
from .obligation import Obligation
from .payment import Payment, PaymentEdit
from .reconciliation import Reconciliation
from .settlement import Settlement
from .transaction import Transaction, TransactionEdit
