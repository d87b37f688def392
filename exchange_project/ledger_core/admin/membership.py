from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin
from django.utils.translation import gettext_lazy as _
from ledger_core.models import Branch, Company, EntityMembership, User
from .forms import UserAdminChangeForm, UserAdminCreationForm
from .mixins import TenantAdminMixin

# roles allowed to manage a company's memberships
MANAGING_ROLES = ("owner", "manager")


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "slug", "default_currency", "created_at")
    search_fields = ("name", "slug")
    ordering = ("name",)

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        # Fetch all memberships and their users in bulk
        return qs.prefetch_related("memberships__user")


@admin.register(Branch)
class BranchAdmin(TenantAdminMixin, admin.ModelAdmin):
    list_display = ("code", "name", "company", "is_active", "created_at")
    list_filter = ("is_active", "company")
    search_fields = ("code", "name")
    ordering = ("company__name", "code")


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    add_form = UserAdminCreationForm
    form = UserAdminChangeForm
    model = User

    list_display = (
        "username", "email", "get_full_name", "is_staff", "default_company", "default_branch")
    list_filter = ("is_staff", "is_superuser", "is_active")
    search_fields = ("username", "email", "first_name", "last_name")
    ordering = ("username",)

    # Group fields logically on edit user page
    fieldsets = (
        (None, {"fields": ("username", "password")}),
        (_("Personal info"), {"fields":
                              ("first_name", "last_name", "email", "phone")}),
        (_("Company / Defaults"), {"fields": ("default_company", "default_branch")}),
        (
            _("Permissions"),
            {
                "fields": (
                    "is_active",
                    "is_staff",
                    "is_superuser",
                    "groups",
                    "user_permissions",
                ),
            },
        ),
        (_("Important dates"), {"fields": ("last_login", "date_joined")}),
    )

    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": (
                    "username",
                    "email",
                    "default_company",
                    "default_branch",
                    "password1",
                    "password2",
                ),
            },
        ),
    )

    # Tenant scoping:
    # limit visible users to memberships of the request.user's companies
    def get_queryset(self, request):
        qs = super().get_queryset(request)
        if request.user.is_superuser:
            return qs
        allowed_company_ids = request.user.memberships.values_list(
            "company_id", flat=True
        )
        # .distinct(): a user in several shared companies shows up once
        return qs.filter(
            memberships__company_id__in=allowed_company_ids).distinct()


@admin.register(EntityMembership)
class EntityMembershipAdmin(TenantAdminMixin, admin.ModelAdmin):
    list_display = ("user", "company", "role", "is_active", "created_at")
    list_filter = ("role", "is_active", "company")
    search_fields = ("user__username", "user__email", "company__name")
    readonly_fields = ("created_at",)
    ordering = ("company__name", "user__username")

    def get_queryset(self, request):
        qs = super().get_queryset(request).select_related("company", "user")
        if request.user.is_superuser:
            return qs
        allowed_company_ids = request.user.memberships.values_list(
            "company_id", flat=True
        )
        return qs.filter(company_id__in=allowed_company_ids)

    def _managed_company_ids(self, request):
        return set(
            request.user.memberships.filter(
                role__in=MANAGING_ROLES, is_active=True).values_list("company_id", flat=True)
        )

    def has_change_permission(self, request, obj=None):
        if request.user.is_superuser:
            return True
        managed = self._managed_company_ids(request)
        if obj is None:
            # change list: at least one company they manage
            return bool(managed)
        return obj.company_id in managed

    def has_delete_permission(self, request, obj=None):
        return self.has_change_permission(request, obj)

    def has_add_permission(self, request):
        if request.user.is_superuser:
            return True
        return bool(self._managed_company_ids(request))
