"""Fee arithmetic over integer minor units.

Every amount is an ``int`` in the currency's smallest unit. Percentages go
through :class:`~decimal.Decimal` so a rate such as ``2.36`` is exact, and
rounding is pinned to half-up so all providers agree to the paisa.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from paygate.utils.errors import ValidationError

_HUNDRED = Decimal(100)
_CENT = Decimal("0.01")


def _require_minor_units(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in minor units", code="INVALID_AMOUNT")
    if value < 0:
        raise ValidationError(f"{field} must not be negative", code="INVALID_AMOUNT")
    return value


def to_decimal_rate(value: Decimal | str | int) -> Decimal:
    """Coerce a fee percentage to ``Decimal``; floats are refused."""

    if isinstance(value, float) or isinstance(value, bool):
        raise ValidationError("Fee percentage must be a Decimal, string or integer", code="INVALID_FEE")
    try:
        rate = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid fee percentage: {value!r}", code="INVALID_FEE") from exc
    if not rate.is_finite() or rate < 0 or rate > _HUNDRED:
        raise ValidationError(f"Fee percentage out of range: {value!r}", code="INVALID_FEE")
    return rate


def calculate_fee(amount_cents: int, fee_percentage: Decimal | str | int, fixed_fee_cents: int = 0) -> int:
    """Return ``round_half_up(amount * pct / 100) + fixed`` in minor units."""

    amount = _require_minor_units(amount_cents, "amount_cents")
    fixed = _require_minor_units(fixed_fee_cents, "fixed_fee_cents")
    rate = to_decimal_rate(fee_percentage)
    variable = (Decimal(amount) * rate / _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(variable) + fixed


def split_amount(amount_cents: int, fee_percentage: Decimal | str | int, fixed_fee_cents: int = 0) -> tuple[int, int]:
    """Return ``(fee_cents, net_cents)``; ``net = amount - fee`` exactly."""

    fee = calculate_fee(amount_cents, fee_percentage, fixed_fee_cents)
    if fee > amount_cents:
        raise ValidationError("Processor fee exceeds the payment amount", code="INVALID_FEE")
    return fee, amount_cents - fee


def to_major_units(amount_cents: int) -> str:
    """Format minor units as a two-decimal major-unit string (``45000`` -> ``"450.00"``)."""

    amount = _require_minor_units(amount_cents, "amount_cents")
    return str((Decimal(amount) / _HUNDRED).quantize(_CENT))


def from_major_units(value: str | int | Decimal) -> int:
    """Parse a provider major-unit amount (``"450.00"``) into minor units without floats."""

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {value!r}", code="INVALID_AMOUNT") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}", code="INVALID_AMOUNT")
    return int((amount * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))


__all__ = ["calculate_fee", "split_amount", "to_decimal_rate", "to_major_units", "from_major_units"]
