"""
Checked fixed-width integer arithmetic.

Amounts handled by the guards are token base units and fixed-point prices that
must fit an unsigned 256-bit word, the width used by the token contracts they
mirror. Python integers never wrap, so these helpers enforce the width explicitly
and raise CalculationOverflowError instead of returning an out-of-range value.
"""
from mcp_presale_guard.errors import CalculationOverflowError

UINT256_MAX = 2**256 - 1


def _check(value: int, op: str) -> int:
    if value < 0 or value > UINT256_MAX:
        raise CalculationOverflowError(f"uint256 {op} out of range: {value}", op=op)
    return value


def checked_add(a: int, b: int) -> int:
    """Add two uint256 values."""
    return _check(_check(a, "add") + _check(b, "add"), "add")


def checked_sub(a: int, b: int) -> int:
    """Subtract b from a, failing on underflow."""
    return _check(_check(a, "sub") - _check(b, "sub"), "sub")


def checked_mul(a: int, b: int) -> int:
    """Multiply two uint256 values."""
    return _check(_check(a, "mul") * _check(b, "mul"), "mul")


def checked_div(a: int, b: int) -> int:
    """Floor-divide two uint256 values."""
    if b == 0:
        raise CalculationOverflowError("uint256 division by zero", op="div")
    return _check(a, "div") // _check(b, "div")


def mul_div(a: int, b: int, denominator: int) -> int:
    """Compute a * b // denominator, multiplying first and checking the product."""
    return checked_div(checked_mul(a, b), denominator)
