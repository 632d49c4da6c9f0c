from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Literal


GROSZ = Decimal("0.01")

VatRateCode = Literal["23", "8", "5", "0", "zw", "np", "oo"]

# zw: exempt, np: outside the scope of Polish VAT, oo: reverse charge
VAT_RATES: dict[str, Decimal] = {
    "23": Decimal("0.23"),
    "8": Decimal("0.08"),
    "5": Decimal("0.05"),
    "0": Decimal("0"),
    "zw": Decimal("0"),
    "np": Decimal("0"),
    "oo": Decimal("0"),
}


def q(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(GROSZ, rounding=ROUND_HALF_UP)


def to_grosze(value: Decimal) -> int:
    return int(q(value) * 100)


def whole_pln(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def vat_rate_value(code: str) -> Decimal:
    try:
        return VAT_RATES[code]
    except KeyError:
        raise ValueError(f"unknown VAT rate code: {code}") from None
