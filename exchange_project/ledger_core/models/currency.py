from django.db import models

from ..money import minor_unit, quantize_money


# ---------- Currency ----------
class Currency(models.Model):
    """
    ISO currencies. Other tables reference currency.code through an FK
    instead of free text, so an unknown code fails validation.
    """
    code = models.CharField(max_length=3, primary_key=True)  # 'USD', 'IRR'
    name = models.CharField(max_length=64)
    symbol = models.CharField(max_length=8, blank=True, null=True)
    # 2 for USD, 0 for IRR, 3 for KWD
    decimal_places = models.PositiveSmallIntegerField(default=2)

    class Meta:
        verbose_name_plural = "currencies"

    def __str__(self):
        return f"{self.code} ({self.symbol or ''})"

    @property
    def minor_unit(self):
        return minor_unit(self.decimal_places)

    def quantize(self, amount):
        return quantize_money(amount, self.decimal_places)
