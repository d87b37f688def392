class TenantAdminMixin:
    """
    Enforce tenant isolation in Django admin.
    Uses request.company (set by CurrentCompanyMiddleware)
    or falls back to request.user.default_company.
    """

    def _get_request_company(self, request):
        # prefer request.company (middleware)
        company = getattr(request, "company", None)
        if company is None:
            user = getattr(request, "user", None)
            company = getattr(user, "default_company", None)
        return company

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        company = self._get_request_company(request)

        # Superusers see every tenant;
        # everyone else only their company
        if request.user.is_superuser:
            return qs
        if company is None:
            return qs.none()
        return qs.filter(company=company)

    def formfield_for_foreignkey(self, db_field, request, **kwargs):
        """Restrict FK dropdowns (company, branch, transaction, ...) to the current company."""
        company = self._get_request_company(request)

        if db_field.name == "company" and not request.user.is_superuser:
            if company is not None:
                kwargs["queryset"] = db_field.related_model.objects.filter(pk=company.pk)
            else:
                kwargs["queryset"] = db_field.related_model.objects.none()
            return super().formfield_for_foreignkey(db_field, request, **kwargs)

        # related model scoped by company -> same company only
        rel_model = getattr(db_field, "related_model", None)
        if (
            rel_model is not None
            and hasattr(rel_model, "company")
            and not request.user.is_superuser
        ):
            if company is not None:
                kwargs["queryset"] = rel_model.objects.filter(company=company)
            else:
                kwargs["queryset"] = rel_model.objects.none()

        return super().formfield_for_foreignkey(db_field, request, **kwargs)

    def save_model(self, request, obj, form, change):
        # Ensure object is always owned by the request's company (unless superuser)
        if not request.user.is_superuser:
            company = self._get_request_company(request)
            if company is not None:
                obj.company = company
        super().save_model(request, obj, form, change)
