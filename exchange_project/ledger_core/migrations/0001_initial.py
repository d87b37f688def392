import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
import ledger_core.managers
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        # ---------- Reference data / tenancy ----------
        migrations.CreateModel(
            name="Currency",
            fields=[
                ("code", models.CharField(max_length=3, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=64)),
                ("symbol", models.CharField(blank=True, max_length=8, null=True)),
                ("decimal_places", models.PositiveSmallIntegerField(default=2)),
            ],
            options={
                "verbose_name_plural": "currencies",
            },
        ),
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(max_length=80, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("default_currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="companies",
                    to="ledger_core.currency",
                )),
            ],
            options={
                "verbose_name_plural": "companies",
            },
        ),
        migrations.CreateModel(
            name="Branch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("code", models.CharField(max_length=20)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="branches",
                    to="ledger_core.company",
                )),
            ],
            options={
                "verbose_name_plural": "branches",
                "constraints": [
                    models.UniqueConstraint(fields=("company", "code"), name="uq_company_branch_code"),
                ],
            },
        ),
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(
                    default=False,
                    help_text="Designates that this user has all permissions without explicitly assigning them.",
                    verbose_name="superuser status",
                )),
                ("username", models.CharField(
                    error_messages={"unique": "A user with that username already exists."},
                    help_text="Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.",
                    max_length=150,
                    unique=True,
                    validators=[django.contrib.auth.validators.UnicodeUsernameValidator()],
                    verbose_name="username",
                )),
                ("first_name", models.CharField(blank=True, max_length=150, verbose_name="first name")),
                ("last_name", models.CharField(blank=True, max_length=150, verbose_name="last name")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email address")),
                ("is_staff", models.BooleanField(
                    default=False,
                    help_text="Designates whether the user can log into this admin site.",
                    verbose_name="staff status",
                )),
                ("is_active", models.BooleanField(
                    default=True,
                    help_text="Designates whether this user should be treated as active. Unselect this instead of deleting accounts.",
                    verbose_name="active",
                )),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("phone", models.CharField(blank=True, max_length=32)),
                ("default_branch", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="default_users",
                    to="ledger_core.branch",
                )),
                ("default_company", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="default_users",
                    to="ledger_core.company",
                )),
                ("groups", models.ManyToManyField(
                    blank=True,
                    help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.",
                    related_name="user_set",
                    related_query_name="user",
                    to="auth.group",
                    verbose_name="groups",
                )),
                ("user_permissions", models.ManyToManyField(
                    blank=True,
                    help_text="Specific permissions for this user.",
                    related_name="user_set",
                    related_query_name="user",
                    to="auth.permission",
                    verbose_name="user permissions",
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["default_company"], name="user_default_company_idx"),
                ],
            },
            managers=[
                ("objects", ledger_core.managers.TenantUserManager()),
            ],
        ),
        migrations.CreateModel(
            name="EntityMembership",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("role", models.CharField(
                    choices=[("owner", "Owner"), ("manager", "Manager"), ("cashier", "Cashier"), ("viewer", "Viewer")],
                    default="viewer",
                    max_length=20,
                )),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="memberships",
                    to="ledger_core.company",
                )),
                ("user", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="memberships",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "user"], name="membership_company_user_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("user", "company"), name="uq_user_company_membership"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("action", models.CharField(max_length=50)),
                ("object_type", models.CharField(max_length=100)),
                ("object_id", models.CharField(max_length=100)),
                ("changes", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to="ledger_core.company",
                )),
                ("user", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "user"], name="auditlog_company_user_idx"),
                    models.Index(fields=["company", "created_at"], name="auditlog_company_created_idx"),
                ],
            },
        ),
        # ---------- Transactions & payments ----------
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("reference", models.CharField(blank=True, max_length=64, null=True)),
                ("customer_ref", models.CharField(blank=True, default="", max_length=64)),
                ("total_received", models.DecimalField(decimal_places=6, max_digits=24)),
                ("total_paid", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24)),
                ("remaining_balance", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24)),
                ("payment_status", models.CharField(
                    choices=[("OPEN", "Open"), ("PARTIAL", "Partially paid"),
                             ("FULLY_PAID", "Fully paid"), ("CANCELLED", "Cancelled")],
                    default="OPEN",
                    max_length=12,
                )),
                ("allow_partial_payment", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True, null=True)),
                ("branch", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    to="ledger_core.branch",
                )),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("received_currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="+",
                    to="ledger_core.currency",
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "payment_status"], name="tx_company_status_idx"),
                    models.Index(fields=["company", "branch"], name="tx_company_branch_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "reference"), name="uq_transaction_company_ref"),
                    models.CheckConstraint(
                        condition=models.Q(("total_received__gt", 0)),
                        name="tx_total_received_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransactionEdit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("previous_status", models.CharField(
                    choices=[("OPEN", "Open"), ("PARTIAL", "Partially paid"),
                             ("FULLY_PAID", "Fully paid"), ("CANCELLED", "Cancelled")],
                    max_length=12,
                )),
                ("new_status", models.CharField(
                    choices=[("OPEN", "Open"), ("PARTIAL", "Partially paid"),
                             ("FULLY_PAID", "Fully paid"), ("CANCELLED", "Cancelled")],
                    max_length=12,
                )),
                ("reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("performed_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
                ("transaction", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="edits",
                    to="ledger_core.transaction",
                )),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=6, max_digits=24)),
                ("exchange_rate", models.DecimalField(decimal_places=8, default=Decimal("1"), max_digits=24)),
                ("amount_in_base", models.DecimalField(decimal_places=6, max_digits=24)),
                ("payment_method", models.CharField(
                    choices=[("CASH", "Cash"), ("BANK_TRANSFER", "Bank Transfer"), ("CARD", "Card"),
                             ("CHEQUE", "Cheque"), ("ONLINE", "Online"), ("OTHER", "Other")],
                    default="CASH",
                    max_length=20,
                )),
                ("details", models.JSONField(blank=True, default=dict)),
                ("status", models.CharField(
                    choices=[("COMPLETED", "Completed"), ("CANCELLED", "Cancelled")],
                    default="COMPLETED",
                    max_length=12,
                )),
                ("notes", models.TextField(blank=True, null=True)),
                ("receipt_number", models.CharField(blank=True, max_length=100, null=True)),
                ("paid_at", models.DateTimeField()),
                ("is_edited", models.BooleanField(default=False)),
                ("edit_reason", models.TextField(blank=True, null=True)),
                ("edited_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("branch", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    to="ledger_core.branch",
                )),
                ("cancelled_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="payments_cancelled",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="+",
                    to="ledger_core.currency",
                )),
                ("paid_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="payments_made",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("transaction", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="payments",
                    to="ledger_core.transaction",
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "transaction"], name="payment_company_tx_idx"),
                    models.Index(fields=["company", "branch", "currency", "status"], name="payment_branch_ccy_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0), ("exchange_rate__gt", 0)),
                        name="payment_positive_amount_rate",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("status", "CANCELLED"), _negated=True),
                            ("cancel_reason__isnull", False),
                            _connector="OR",
                        ),
                        name="payment_cancel_has_reason",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentEdit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("previous_amount", models.DecimalField(decimal_places=6, max_digits=24)),
                ("previous_exchange_rate", models.DecimalField(decimal_places=8, max_digits=24)),
                ("previous_amount_in_base", models.DecimalField(decimal_places=6, max_digits=24)),
                ("previous_method", models.CharField(
                    choices=[("CASH", "Cash"), ("BANK_TRANSFER", "Bank Transfer"), ("CARD", "Card"),
                             ("CHEQUE", "Cheque"), ("ONLINE", "Online"), ("OTHER", "Other")],
                    max_length=20,
                )),
                ("new_amount", models.DecimalField(decimal_places=6, max_digits=24)),
                ("new_exchange_rate", models.DecimalField(decimal_places=8, max_digits=24)),
                ("new_amount_in_base", models.DecimalField(decimal_places=6, max_digits=24)),
                ("new_method", models.CharField(
                    choices=[("CASH", "Cash"), ("BANK_TRANSFER", "Bank Transfer"), ("CARD", "Card"),
                             ("CHEQUE", "Cheque"), ("ONLINE", "Online"), ("OTHER", "Other")],
                    max_length=20,
                )),
                ("reason", models.TextField()),
                ("edited_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("edited_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
                ("payment", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="edits",
                    to="ledger_core.payment",
                )),
            ],
            options={
                "ordering": ["edited_at", "id"],
            },
        ),
        # ---------- Cash balances ----------
        migrations.CreateModel(
            name="CashBalance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("auto_calculated_balance", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24)),
                ("manual_adjustment", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24)),
                ("balance", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24)),
                ("version", models.PositiveIntegerField(default=0)),
                ("last_calculated_at", models.DateTimeField(blank=True, null=True)),
                ("last_adjusted_at", models.DateTimeField(blank=True, null=True)),
                ("last_updated", models.DateTimeField(auto_now=True)),
                ("branch", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="cash_balances",
                    to="ledger_core.branch",
                )),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="+",
                    to="ledger_core.currency",
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "currency"], name="cashbal_company_ccy_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "branch", "currency"),
                        name="uq_cash_balance_branch_currency",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("branch__isnull", True)),
                        fields=("company", "currency"),
                        name="uq_cash_balance_company_currency",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Adjustment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("delta", models.DecimalField(decimal_places=6, max_digits=24)),
                ("reason", models.TextField()),
                ("balance_before", models.DecimalField(decimal_places=6, max_digits=24)),
                ("balance_after", models.DecimalField(decimal_places=6, max_digits=24)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("cash_balance", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="adjustments",
                    to="ledger_core.cashbalance",
                )),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("performed_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["company", "created_at"], name="adj_company_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("delta", 0), _negated=True),
                        name="adjustment_nonzero_delta",
                    ),
                ],
            },
        ),
        # ---------- Settlement ----------
        migrations.CreateModel(
            name="Obligation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("reference", models.CharField(blank=True, default="", max_length=64)),
                ("direction", models.CharField(
                    choices=[("INCOMING", "Incoming credit"), ("OUTGOING", "Outgoing debt")],
                    max_length=8,
                )),
                ("amount", models.DecimalField(decimal_places=6, max_digits=24)),
                ("settled_amount", models.DecimalField(decimal_places=6, default=Decimal("0"), max_digits=24)),
                ("rate", models.DecimalField(decimal_places=8, max_digits=24)),
                ("status", models.CharField(
                    choices=[("PENDING", "Pending"), ("PARTIAL", "Partially settled"),
                             ("SETTLED", "Settled"), ("CANCELLED", "Cancelled")],
                    default="PENDING",
                    max_length=10,
                )),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True, null=True)),
                ("branch", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    to="ledger_core.branch",
                )),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("created_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
                ("currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="+",
                    to="ledger_core.currency",
                )),
                ("transaction", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="obligations",
                    to="ledger_core.transaction",
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "direction", "currency", "status"], name="obligation_match_idx"),
                    models.Index(fields=["company", "created_at"], name="oblig_company_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0), ("rate__gt", 0)),
                        name="obligation_positive_amount_rate",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("settled_amount__gte", 0),
                            ("settled_amount__lte", models.F("amount")),
                        ),
                        name="obligation_settled_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Settlement",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=6, max_digits=24)),
                ("outgoing_rate", models.DecimalField(decimal_places=8, max_digits=24)),
                ("incoming_rate", models.DecimalField(decimal_places=8, max_digits=24)),
                ("profit", models.DecimalField(decimal_places=6, max_digits=24)),
                ("notes", models.TextField(blank=True, default="")),
                ("executed_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("executed_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
                ("incoming", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="settlements_as_incoming",
                    to="ledger_core.obligation",
                )),
                ("outgoing", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="settlements_as_outgoing",
                    to="ledger_core.obligation",
                )),
            ],
            options={
                "ordering": ["executed_at", "id"],
                "indexes": [
                    models.Index(fields=["company", "executed_at"], name="settlement_company_exec_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="settlement_positive_amount",
                    ),
                ],
            },
        ),
        # ---------- Reconciliation ----------
        migrations.CreateModel(
            name="Reconciliation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("opening_balance", models.DecimalField(decimal_places=6, max_digits=24)),
                ("closing_balance", models.DecimalField(decimal_places=6, max_digits=24)),
                ("expected_balance", models.DecimalField(decimal_places=6, max_digits=24)),
                ("variance", models.DecimalField(decimal_places=6, max_digits=24)),
                ("currency_breakdown", models.JSONField(blank=True, default=dict)),
                ("breakdown_variance", models.JSONField(blank=True, default=dict)),
                ("is_breached", models.BooleanField(default=False)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("branch", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="reconciliations",
                    to="ledger_core.branch",
                )),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    to="ledger_core.company",
                )),
                ("created_by", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL,
                )),
                ("currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="+",
                    to="ledger_core.currency",
                )),
            ],
            options={
                "ordering": ["-date", "-id"],
                "indexes": [
                    models.Index(fields=["company", "date"], name="recon_company_date_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("company", "branch", "date", "currency"),
                        name="uq_reconciliation_branch_date_currency",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("branch__isnull", True)),
                        fields=("company", "date", "currency"),
                        name="uq_reconciliation_hq_date_currency",
                    ),
                ],
            },
        ),
    ]
