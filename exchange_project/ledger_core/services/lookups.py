from ..exceptions import NotFoundError, ValidationError
from ..models import Branch, Currency


def get_currency(value, field="currency"):
    """Accept a Currency or an ISO code ('usd' works too)."""
    if isinstance(value, Currency):
        return value
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} is required", field=field)
    try:
        return Currency.objects.get(code=value.strip().upper())
    except Currency.DoesNotExist:
        raise ValidationError(f"Unknown currency: {value}", field=field)


def get_branch(company, value):
    """None stays None (company-level); ids and Branch objects must belong to `company`."""
    if value is None or value == "":
        return None
    branch_id = value.pk if isinstance(value, Branch) else value
    try:
        return Branch.objects.for_company(company).get(pk=branch_id)
    except (Branch.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Branch {branch_id} does not exist", field="branch")


def bounded_text(value, field, max_length):
    """Optional free text; None stays None, anything longer than the column is refused."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text", field=field)
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(
            f"{field} allows at most {max_length} characters (got {len(value)})", field=field)
    return value
