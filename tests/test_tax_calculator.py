from __future__ import annotations

from decimal import Decimal

import pytest

from ksiegai.business.tax.calculator import calculate_income_tax, zus_contributions


def test_skala_lower_bracket_applies_tax_reduction() -> None:
    result = calculate_income_tax(Decimal("100000"), Decimal("20000"), "SKALA")
    assert result.base == Decimal("80000")
    assert result.tax == Decimal("6000")
    assert result.effective_rate == Decimal("0.0600")
    assert [bracket.label for bracket in result.brackets] == ["skala 12%"]


def test_skala_small_income_is_never_negative() -> None:
    result = calculate_income_tax(Decimal("20000"), Decimal("0"), "SKALA")
    assert result.tax == Decimal("0")


def test_skala_upper_bracket_splits_the_base() -> None:
    result = calculate_income_tax(Decimal("200000"), Decimal("0"), "SKALA")
    assert result.tax == Decimal("36400")
    assert [(bracket.base, bracket.tax) for bracket in result.brackets] == [
        (Decimal("120000"), Decimal("10800")),
        (Decimal("80000"), Decimal("25600")),
    ]


def test_liniowy_rounds_base_and_tax_to_whole_pln() -> None:
    result = calculate_income_tax(Decimal("1000.50"), Decimal("0"), "LINIOWY")
    assert result.base == Decimal("1001")
    assert result.tax == Decimal("190")

    flat = calculate_income_tax(Decimal("100000"), Decimal("20000"), "LINIOWY")
    assert flat.tax == Decimal("15200")


def test_liniowy_costs_above_income_give_zero_base() -> None:
    result = calculate_income_tax(Decimal("1000"), Decimal("5000"), "LINIOWY")
    assert result.base == Decimal("0")
    assert result.tax == Decimal("0")


def test_ryczalt_ignores_costs() -> None:
    result = calculate_income_tax(Decimal("100000"), Decimal("50000"), "RYCZALT", Decimal("12.5"))
    assert result.tax == Decimal("12500")
    assert result.costs == Decimal("0")
    assert result.brackets[0].label == "ryczałt 12.5%"


def test_invalid_tax_inputs_raise() -> None:
    with pytest.raises(ValueError):
        calculate_income_tax(Decimal("1000"), Decimal("0"), "RYCZALT")
    with pytest.raises(ValueError):
        calculate_income_tax(Decimal("1000"), Decimal("0"), "KARTA")


def test_zus_contributions() -> None:
    result = zus_contributions(Decimal("5000"))
    assert result.social == Decimal("488.00")
    assert result.health == Decimal("450.00")
    assert result.total == Decimal("938.00")
