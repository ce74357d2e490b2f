import pytest

from mcp_presale_guard.checked_math import (
    UINT256_MAX,
    checked_add,
    checked_div,
    checked_mul,
    checked_sub,
    mul_div,
)
from mcp_presale_guard.errors import CalculationOverflowError


def test_operations_within_range():
    assert checked_add(UINT256_MAX - 1, 1) == UINT256_MAX
    assert checked_sub(5, 5) == 0
    assert checked_mul(2**128 - 1, 2**128 + 1) == UINT256_MAX
    assert checked_div(7, 2) == 3


def test_add_overflow():
    with pytest.raises(CalculationOverflowError) as exc_info:
        checked_add(UINT256_MAX, 1)
    assert exc_info.value.context["op"] == "add"


def test_sub_underflow():
    with pytest.raises(CalculationOverflowError):
        checked_sub(1, 2)


def test_mul_overflow():
    with pytest.raises(CalculationOverflowError):
        checked_mul(2**128, 2**128)


def test_negative_operands_are_rejected():
    with pytest.raises(CalculationOverflowError):
        checked_mul(-1, 5)


def test_division_by_zero():
    with pytest.raises(CalculationOverflowError):
        checked_div(1, 0)


def test_mul_div_multiplies_first():
    assert mul_div(1_000_000, 1, 3) == 333_333
    assert mul_div(10, 3, 4) == 7
    with pytest.raises(CalculationOverflowError):
        mul_div(UINT256_MAX, 2, 2)
