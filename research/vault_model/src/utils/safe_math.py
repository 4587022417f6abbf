"""Checked integer helpers for u128 amounts"""
from ..constants import U128_MAX
from ..errors import ArithmeticOverflow, Underflow

def checked_add(a: int, b: int) -> int:
    """Add with overflow checking"""
    result = a + b
    if result > U128_MAX:
        raise ArithmeticOverflow("Arithmetic overflow in addition")
    return result

def checked_sub(a: int, b: int) -> int:
    """Subtract with underflow checking"""
    if b > a:
        raise Underflow(f"Arithmetic underflow in subtraction: {a} - {b}")
    return a - b

def ceil_div(a: int, b: int) -> int:
    """Divide rounding up"""
    if b == 0:
        raise ArithmeticOverflow("Division by zero")
    return -(-a // b)
