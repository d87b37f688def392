import logging
from decimal import Decimal
from typing import Optional
from ..models import AuditLog, Company

logger = logging.getLogger(__name__)


def _jsonable(value):
    # JSONField cannot hold Decimal; keep full precision as text
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def log_action(
    *,
    action: str,
    instance,
    user=None,
    company: Optional[Company] = None,
    changes: dict | None = None,
):
    """
    Central audit logger.
    Call inside the caller's atomic block so the row rolls back with it.
    """

    if not company:
        company = getattr(instance, "company", None)

    entry = AuditLog.objects.create(
        company=company,
        user=user if getattr(user, "pk", None) else None,
        action=action,
        object_type=instance.__class__.__name__,
        object_id=str(instance.pk),
        changes=_jsonable(changes) if changes is not None else None,
    )
    logger.debug("audit %s %s(%s) by %s", action, entry.object_type, entry.object_id, user)
    return entry
