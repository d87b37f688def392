from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .exceptions import ValidationError

ZERO = Decimal("0")

# ISO minor units for the currencies the exchange handles.
# Used when seeding Currency rows; the Currency table is authoritative.
CURRENCY_DECIMALS = {
    "USD": 2, "EUR": 2, "CAD": 2, "GBP": 2, "AUD": 2, "CHF": 2,
    "CNY": 2, "INR": 2, "MXN": 2, "AED": 2, "TRY": 2, "AFN": 2, "PKR": 2,
    # no minor unit in practice
    "IRR": 0, "JPY": 0, "KRW": 0, "VND": 0, "IDR": 0, "IQD": 0,
    # three-decimal dinars
    "KWD": 3, "BHD": 3, "OMR": 3, "JOD": 3, "TND": 3, "LYD": 3,
}


def to_decimal(value, field="amount", places=6):
    """
    Coerce caller input to Decimal.
    Binary floats are refused: money must arrive as str, int or Decimal.
    Values finer than `places` decimals are refused rather than rounded.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string, not {type(value).__name__}", field=field)
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} is not a valid decimal: {value!r}", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    if places is None:
        return result
    try:
        fixed = result.quantize(minor_unit(places))
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range", field=field)
    if fixed != result:
        raise ValidationError(f"{field} allows at most {places} decimal places", field=field)
    # columns are NUMERIC(24, places)
    if abs(fixed) >= Decimal(10) ** (24 - places):
        raise ValidationError(f"{field} is out of range", field=field)
    return fixed


def minor_unit(decimal_places):
    # 2 -> 0.01, 0 -> 1, 3 -> 0.001
    return Decimal(1).scaleb(-int(decimal_places))


def quantize_money(amount, decimal_places):
    """Round half-up to the currency's minor unit."""
    return amount.quantize(minor_unit(decimal_places), rounding=ROUND_HALF_UP)


def tolerance_band(total_received, decimal_places, percent):
    """
    Allowed deviation between paid and owed.
    The larger of one minor unit and `percent` of the amount owed.
    """
    unit = minor_unit(decimal_places)
    relative = (abs(total_received) * Decimal(percent) / Decimal(100))
    return max(unit, relative)
