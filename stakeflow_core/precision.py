"""
Fixed-point precision constants and checked integer arithmetic for stakeflow.

Every amount handled by the accounting components is a Python ``int``
kept inside the unsigned 256-bit envelope that token ledgers use:

    0 <= amount <= 2**256 - 1

Ratios (cumulative reward per unit of stake, refund ratios, release
rates, prices) are fixed-point values with 18 decimals:

    1.0 == SCALE == 10**18

Multiplications always happen before divisions and every division
floors.  Leaving the envelope raises ``ArithmeticFault`` instead of
wrapping or saturating.
"""

from __future__ import annotations

from stakeflow_core.errors import ArithmeticFault, InvalidAmount

# Number of decimal places of every fixed-point ratio.
SCALE_DECIMALS: int = 18

# 1.0 in fixed-point.
SCALE: int = 10 ** SCALE_DECIMALS

# Basis points: 10_000 bps == 100 %.
BPS_DENOMINATOR: int = 10_000

U256_MAX: int = (1 << 256) - 1


def _in_envelope(value: int) -> bool:
    return 0 <= value <= U256_MAX


def require_amount(value: int, name: str = "amount") -> int:
    """Validate that *value* is an integer amount inside the envelope."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount("BAD_AMOUNT", f"{name} must be an integer, got {type(value).__name__}")
    if not _in_envelope(value):
        raise InvalidAmount("BAD_AMOUNT", f"{name} out of range: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    result = a + b
    if not _in_envelope(result):
        raise ArithmeticFault("OVERFLOW", f"{a} + {b} leaves the uint256 range")
    return result


def checked_sub(a: int, b: int) -> int:
    result = a - b
    if not _in_envelope(result):
        raise ArithmeticFault("UNDERFLOW", f"{a} - {b} is negative")
    return result


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if not _in_envelope(result):
        raise ArithmeticFault("OVERFLOW", f"{a} * {b} leaves the uint256 range")
    return result


def mul_div(a: int, b: int, d: int) -> int:
    """
    ``floor(a * b / d)`` with the product checked against the envelope.

    A zero divisor is a programming error here: callers that may see a
    zero denominator must use :func:`safe_div` or test for zero first.

    >>> mul_div(300, 10**18, 900)
    333333333333333333
    """
    if d == 0:
        raise ArithmeticFault("DIV_BY_ZERO", f"mul_div({a}, {b}, 0)")
    return checked_mul(a, b) // d


def safe_div(n: int, d: int) -> int:
    """Floor division that yields 0 for a zero denominator."""
    if d == 0:
        return 0
    return n // d


def apply_bps(amount: int, bps: int) -> int:
    """Return ``amount * bps / 10_000`` rounded down."""
    return mul_div(amount, bps, BPS_DENOMINATOR)


def to_fixed(value: int) -> int:
    """Lift a whole number into fixed-point."""
    return checked_mul(value, SCALE)


def from_fixed(value: int) -> int:
    """Truncate a fixed-point value to its whole part."""
    return value // SCALE


def format_amount(value: int, decimals: int = SCALE_DECIMALS, symbol: str = "") -> str:
    """
    Render an integer amount with *decimals* implied decimal places.

    >>> format_amount(1_500_000_000_000_000_000, symbol="STK")
    '1.500000000000000000 STK'
    """
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10 ** decimals)
    text = f"{sign}{whole}.{frac:0{decimals}d}" if decimals else f"{sign}{whole}"
    return f"{text} {symbol}" if symbol else text
