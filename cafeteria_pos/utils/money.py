"""Money and quantity helpers shared by the POS services."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value: Union[int, float, Decimal, str]) -> Decimal:
    """
    Convert a value to a Decimal quantized to cents.

    Floats go through ``str`` so ``2.5`` becomes ``Decimal('2.50')`` and not
    the binary approximation.

    Raises:
        ValueError: if the value is empty or not numeric.
    """
    if value is None or value == "":
        raise ValueError('Empty amount')
    if isinstance(value, bool):
        raise ValueError(f'Invalid amount: {value!r}')
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f'Invalid amount: {value!r}')
    if not amount.is_finite():
        raise ValueError(f'Invalid amount: {value!r}')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: Union[int, float, Decimal, str]) -> Decimal:
    """Convert a tax rate to Decimal without quantizing it."""
    if isinstance(value, bool):
        raise ValueError(f'Invalid rate: {value!r}')
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f'Invalid rate: {value!r}')
    if not rate.is_finite():
        raise ValueError(f'Invalid rate: {value!r}')
    return rate


def is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def format_money(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format an amount with two decimals for console output.

    Examples:
        format_money(8.1) -> "$8.10"
        format_money(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        return f"${to_money(value):,.2f}"
    except ValueError:
        return "-"
