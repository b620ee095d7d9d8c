from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

CENTS_PER_UNIT = 100
TOLERANCE_CENTS = 1

Number = Union[int, float, str, Decimal]


def parse_amount(value: Optional[Number], *, allow_negative: bool = True) -> int:
    """Turn a user supplied amount (``"1 250,50"``, ``12.5``, ``-3``) into cents."""
    if value is None:
        raise ValueError("Amount is required")
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, (int, float, Decimal)):
        clean = str(value)
    else:
        clean = value.strip().replace("€", "").replace(" ", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * CENTS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def ledger_cents(value: Optional[Number]) -> int:
    # Ledger amounts are stored as floating point units.
    if value is None:
        return 0
    amount = Decimal(str(value))
    return int((amount * CENTS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_euros(cents: Optional[int]) -> Optional[float]:
    if cents is None:
        return None
    return round(cents / CENTS_PER_UNIT, 2)


def ceil_to_unit(cents: int) -> int:
    """Round a positive cent amount up to the next whole currency unit."""
    if cents <= 0:
        return 0
    return -(-cents // CENTS_PER_UNIT) * CENTS_PER_UNIT
