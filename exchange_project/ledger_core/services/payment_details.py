"""
Method-specific payment details.

Each payment method has its own detail shape. `parse_details(method, raw)`
picks the variant by method tag, builds it from the caller's dict and runs
its `validate()`. The stored form is `variant.as_dict()`.
"""
from dataclasses import asdict, dataclass, fields
from ..exceptions import ValidationError


def _text(raw, key):
    value = raw.get(key)
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class PaymentDetails:
    method = "OTHER"

    @classmethod
    def from_dict(cls, raw):
        names = {f.name for f in fields(cls)}
        unknown = set(raw) - names
        if unknown:
            raise ValidationError(
                f"Unexpected {cls.method} detail field(s): {', '.join(sorted(unknown))}",
                field="details",
            )
        return cls(**{name: _text(raw, name) for name in names})

    def validate(self):
        return self

    def as_dict(self):
        # drop empty optional fields
        return {k: v for k, v in asdict(self).items() if v}


@dataclass(frozen=True)
class CashDetails(PaymentDetails):
    method = "CASH"
    # optional drawer / counter label
    counter: str = ""


@dataclass(frozen=True)
class BankTransferDetails(PaymentDetails):
    method = "BANK_TRANSFER"
    reference_id: str = ""
    bank_name: str = ""
    account_holder: str = ""

    def validate(self):
        if not self.reference_id:
            raise ValidationError(
                "Bank transfer requires a reference_id", field="details.reference_id")
        return self


@dataclass(frozen=True)
class ChequeDetails(PaymentDetails):
    method = "CHEQUE"
    cheque_number: str = ""
    bank_name: str = ""
    cheque_date: str = ""

    def validate(self):
        if not self.cheque_number:
            raise ValidationError(
                "Cheque requires a cheque_number", field="details.cheque_number")
        if not self.bank_name:
            raise ValidationError(
                "Cheque requires a bank_name", field="details.bank_name")
        return self


@dataclass(frozen=True)
class CardDetails(PaymentDetails):
    method = "CARD"
    last_four_digits: str = ""
    card_type: str = ""
    authorization_code: str = ""

    def validate(self):
        digits = self.last_four_digits
        if len(digits) != 4 or not digits.isdigit():
            raise ValidationError(
                "Card payments need exactly four last_four_digits",
                field="details.last_four_digits",
            )
        return self


@dataclass(frozen=True)
class OnlineDetails(PaymentDetails):
    method = "ONLINE"
    provider: str = ""
    transaction_id: str = ""


@dataclass(frozen=True)
class OtherDetails(PaymentDetails):
    method = "OTHER"
    description: str = ""


DETAIL_TYPES = {
    cls.method: cls
    for cls in (CashDetails, BankTransferDetails, ChequeDetails,
                CardDetails, OnlineDetails, OtherDetails)
}


def parse_details(method, raw=None):
    """Build and validate the variant for `method`."""
    if method not in DETAIL_TYPES:
        raise ValidationError(f"Unknown payment method: {method}", field="payment_method")
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError("details must be an object", field="details")
    return DETAIL_TYPES[method].from_dict(raw).validate()
