# goalvault/utils/units.py
from decimal import Decimal, InvalidOperation
from typing import Union


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """Parse user or API input into a Decimal, rejecting NaN and infinities."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a number: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return amount


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    """
    Convert a token amount to its integer on-chain representation.

    ``to_smallest_unit(Decimal("1.5"), 6) == 1_500_000``. Amounts with more
    precision than the token supports are refused rather than rounded.
    """
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimal places")
    return int(scaled)

