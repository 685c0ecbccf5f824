from decimal import Decimal

import pytest

from paygate.services import fees
from paygate.utils.errors import ValidationError


def test_paytm_rate_on_450_rupees():
    fee, net = fees.split_amount(45000, Decimal("2.36"))
    assert fee == 1062
    assert net == 43938


@pytest.mark.parametrize(
    ("amount", "rate", "fixed", "expected"),
    [
        (10000, Decimal("2.00"), 0, 200),
        (10000, Decimal("2.90"), 30, 320),
        (1, Decimal("2.00"), 0, 0),
        (25, Decimal("2.00"), 0, 1),  # 0.5 rounds half-up
        (45000, Decimal("1.18"), 0, 531),
        (45000, Decimal("0"), 0, 0),
    ],
)
def test_calculate_fee_rounds_half_up(amount, rate, fixed, expected):
    assert fees.calculate_fee(amount, rate, fixed) == expected


def test_rate_accepts_strings_but_not_floats():
    assert fees.calculate_fee(10000, "2.5") == 250
    with pytest.raises(ValidationError) as exc:
        fees.calculate_fee(10000, 2.5)
    assert exc.value.code == "INVALID_FEE"


def test_fee_larger_than_amount_is_rejected():
    with pytest.raises(ValidationError) as exc:
        fees.split_amount(100, Decimal("0"), fixed_fee_cents=150)
    assert exc.value.code == "INVALID_FEE"


@pytest.mark.parametrize("amount", [-1, 10.5, True])
def test_amounts_must_be_non_negative_integers(amount):
    with pytest.raises(ValidationError) as exc:
        fees.calculate_fee(amount, Decimal("2.00"))
    assert exc.value.code == "INVALID_AMOUNT"


def test_rate_out_of_range():
    with pytest.raises(ValidationError):
        fees.to_decimal_rate("100.01")
    with pytest.raises(ValidationError):
        fees.to_decimal_rate("-1")


def test_major_unit_conversion():
    assert fees.to_major_units(45000) == "450.00"
    assert fees.to_major_units(5) == "0.05"
    assert fees.from_major_units("450.00") == 45000
    assert fees.from_major_units("0.1") == 10
    with pytest.raises(ValidationError):
        fees.from_major_units("four hundred")


@pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity", "-Infinity", Decimal("Infinity")])
def test_non_finite_major_units_are_rejected(value):
    with pytest.raises(ValidationError) as exc:
        fees.from_major_units(value)
    assert exc.value.code == "INVALID_AMOUNT"
