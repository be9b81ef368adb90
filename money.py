from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("1")

Amount = Union[str, int, float, Decimal]


def to_cents(value: Amount, *, allow_negative: bool = False) -> int:
    """Convert a decimal amount (``"12.345"``, ``12.3``, ``"$1,204.50"``) to cents.

    Half-cents round away from zero so a partial sum and the total can never
    drift apart once everything is held as integer cents.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, str):
        clean = value.strip().replace("$", "").replace(",", "").replace(" ", "")
        if not clean:
            raise ValueError("Invalid amount")
        value = clean
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(CENT, rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def round_cents(value: Decimal) -> int:
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    return float(Decimal(cents) / 100)
