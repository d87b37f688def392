from django.utils.deprecation import MiddlewareMixin
from .models import Branch, Company


class CurrentCompanyMiddleware(MiddlewareMixin):
    # Runs on every request and attaches the actor's tenant and branch:
    # request.company / request.branch (None for anonymous users)
    def process_request(self, request):
        request.company = None
        request.branch = None
        if not request.user.is_authenticated:
            return

        # Default company fallback: the user's own default
        company = getattr(request.user, "default_company", None)

        # If the user switched companies, the choice is stored in the session
        company_id = request.session.get("active_company_id")
        if company_id:
            # user must be an active member of that company
            company = Company.objects.filter(
                id=company_id,
                memberships__user=request.user,
                memberships__is_active=True,
            ).first()
        request.company = company
        if company is None:
            return

        # Branch: session choice first, then the user's default, within the tenant
        branch_id = request.session.get("active_branch_id") or getattr(
            request.user, "default_branch_id", None)
        if branch_id:
            request.branch = Branch.objects.for_company(company).filter(pk=branch_id).first()
