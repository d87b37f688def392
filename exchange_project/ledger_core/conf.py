from decimal import Decimal
from django.conf import settings

# Fallbacks used when settings.LEDGER omits a key
DEFAULTS = {
    "TOLERANCE_PERCENT": Decimal("2"),
    "VARIANCE_THRESHOLD": Decimal("50"),
    "CONFLICT_RETRIES": 3,
    "CONFLICT_BACKOFF_SECONDS": 0.05,
    "LOCK_TIMEOUT_MS": 5000,
    "BALANCE_CACHE_TIMEOUT": 300,
}


def ledger_setting(name):
    """Read one ledger option, honouring override_settings in tests."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown ledger setting: {name}")
    configured = getattr(settings, "LEDGER", None) or {}
    return configured.get(name, DEFAULTS[name])
