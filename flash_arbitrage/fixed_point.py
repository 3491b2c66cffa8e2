"""
Integer wei arithmetic.

On-chain amounts are unsigned 256-bit integers. They are held as Python
ints, checked into range where they cross the chain boundary, and only
converted to Decimal for display.
"""

from decimal import ROUND_DOWN, Context, Decimal
from typing import Union

UINT256_MAX = 2**256 - 1
_EXACT = Context(prec=100)
BPS_DENOMINATOR = 10_000
WEI_PER_ETHER = 10**18
WEI_PER_GWEI = 10**9


def check_uint256(value: int, name: str = "value") -> int:
    """Return ``value`` if it is an int in the uint256 range, else raise ValueError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"{name} out of uint256 range: {value}")
    return value


def floor_div(numerator: int, denominator: int) -> int:
    """Floor division that rejects a zero denominator with ValueError."""
    if denominator == 0:
        raise ValueError("division by zero")
    return numerator // denominator


def bps_of(amount: int, bps: int) -> int:
    """``amount * bps / 10000`` rounded toward negative infinity."""
    return amount * bps // BPS_DENOMINATOR


def ratio_bps(numerator: int, denominator: int) -> int:
    """``numerator * 10000 / denominator`` floored; signed numerators allowed."""
    return floor_div(numerator * BPS_DENOMINATOR, denominator)


def percent_of(amount: int, percent: int) -> int:
    """``amount * percent / 100`` floored, e.g. ``percent_of(x, 120)`` adds 20%."""
    return amount * percent // 100


def to_wei(amount: Union[Decimal, str, int], decimals: int = 18) -> int:
    """Convert a human amount to base units; fractional dust is truncated."""
    value = Decimal(str(amount)).scaleb(decimals, context=_EXACT)
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def gwei_to_wei(gwei: Union[Decimal, str, int]) -> int:
    return to_wei(gwei, 9)


def format_units(amount: int, decimals: int = 18) -> Decimal:
    """Exact Decimal rendering of a base-unit amount, for logs and display."""
    return Decimal(amount).scaleb(-decimals, context=_EXACT)


def format_ether(amount: int) -> str:
    return _trim(f"{format_units(amount, 18):f}")


def format_gwei(amount: int) -> str:
    return _trim(f"{format_units(amount, 9):f}")


def _trim(text: str) -> str:
    if "." not in text:
        return text
    return text.rstrip("0").rstrip(".")
