from __future__ import annotations

from decimal import Decimal

from ksiegai.business.tax.schemas import IncomeTaxResult, TaxBracket, ZusContributions
from ksiegai.core.money import q, whole_pln


ZERO = Decimal("0")

SKALA_THRESHOLD = Decimal("120000")
SKALA_LOWER_RATE = Decimal("0.12")
SKALA_UPPER_RATE = Decimal("0.32")
SKALA_TAX_REDUCTION = Decimal("3600")
SKALA_THRESHOLD_TAX = Decimal("10800")
LINIOWY_RATE = Decimal("0.19")

ZUS_SOCIAL_RATE = Decimal("0.0976")
ZUS_HEALTH_RATE = Decimal("0.09")


def calculate_income_tax(
    income: Decimal,
    costs: Decimal,
    tax_type: str,
    ryczalt_rate: Decimal | None = None,
) -> IncomeTaxResult:
    """Annual-style income tax on cumulative income and costs, in whole PLN."""

    income = Decimal(income)
    costs = Decimal(costs)

    if tax_type == "RYCZALT":
        if ryczalt_rate is None:
            raise ValueError("ryczalt_rate is required for RYCZALT")
        rate = Decimal(ryczalt_rate) / Decimal("100")
        base = whole_pln(max(ZERO, income))
        tax = whole_pln(base * rate)
        brackets = [TaxBracket(label=f"ryczałt {Decimal(ryczalt_rate).normalize()}%", base=base, rate=rate, tax=tax)]
    else:
        base = whole_pln(max(ZERO, income - costs))
        if tax_type == "LINIOWY":
            tax = whole_pln(base * LINIOWY_RATE)
            brackets = [TaxBracket(label="liniowy 19%", base=base, rate=LINIOWY_RATE, tax=tax)]
        elif tax_type == "SKALA":
            if base <= SKALA_THRESHOLD:
                tax = whole_pln(max(ZERO, base * SKALA_LOWER_RATE - SKALA_TAX_REDUCTION))
                brackets = [TaxBracket(label="skala 12%", base=base, rate=SKALA_LOWER_RATE, tax=tax)]
            else:
                upper_base = base - SKALA_THRESHOLD
                upper_tax = whole_pln(upper_base * SKALA_UPPER_RATE)
                tax = SKALA_THRESHOLD_TAX + upper_tax
                brackets = [
                    TaxBracket(label="skala 12%", base=SKALA_THRESHOLD, rate=SKALA_LOWER_RATE, tax=SKALA_THRESHOLD_TAX),
                    TaxBracket(label="skala 32%", base=upper_base, rate=SKALA_UPPER_RATE, tax=upper_tax),
                ]
        else:
            raise ValueError(f"unsupported tax type: {tax_type}")

    effective_rate = (tax / income).quantize(Decimal("0.0001")) if income > ZERO else ZERO
    return IncomeTaxResult(
        tax_type=tax_type,
        income=q(income),
        costs=q(costs) if tax_type != "RYCZALT" else ZERO,
        base=base,
        tax=tax,
        effective_rate=effective_rate,
        brackets=brackets,
    )


def zus_contributions(base: Decimal) -> ZusContributions:
    base = q(base)
    social = q(base * ZUS_SOCIAL_RATE)
    health = q(base * ZUS_HEALTH_RATE)
    return ZusContributions(base=base, social=social, health=health, total=social + health)
