"""18-decimal fixed-point arithmetic ("bnum").

Values are integers scaled by BONE = 10^18. Multiplication and division
round half up; every result is checked against the uint256 range, and
subtraction below zero raises Underflow instead of wrapping.

The power function follows the classic weighted-pool approach: the whole
part of the exponent uses repeated squaring, the fractional part a binomial
series approximation that stops once terms fall below BPOW_PRECISION.
"""

from __future__ import annotations

from indexpool.constants import BONE, BPOW_PRECISION, MAX_BPOW_BASE, MIN_BPOW_BASE
from indexpool.safe_int import DivisionByZero, S, SafeIntError

__all__ = [
    "BpowBaseOutOfRange",
    "btoi",
    "bfloor",
    "badd",
    "bsub",
    "bsub_sign",
    "bmul",
    "bdiv",
    "bpowi",
    "bpow",
    "bpow_approx",
]


class BpowBaseOutOfRange(SafeIntError):
    """bpow base is outside [MIN_BPOW_BASE, MAX_BPOW_BASE]."""

    pass


def btoi(a: int) -> int:
    """Integer part of a fixed-point value."""
    return a // BONE


def bfloor(a: int) -> int:
    """Fixed-point value rounded down to a whole number."""
    return btoi(a) * BONE


def badd(a: int, b: int) -> int:
    return (S(a) + b).to_uint256()


def bsub(a: int, b: int) -> int:
    return (S(a) - b).to_uint256()


def bsub_sign(a: int, b: int) -> tuple[int, bool]:
    """Absolute difference and whether it is negative."""
    if a >= b:
        return a - b, False
    return b - a, True


def bmul(a: int, b: int) -> int:
    c0 = (S(a) * b).to_uint256()
    c1 = (S(c0) + BONE // 2).to_uint256()
    return c1 // BONE


def bdiv(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero(f"bdiv by zero: {a} / 0")
    c0 = (S(a) * BONE).to_uint256()
    c1 = (S(c0) + b // 2).to_uint256()
    return c1 // b


def bpowi(a: int, n: int) -> int:
    """Raise a fixed-point base to a whole-number exponent."""
    z = a if n % 2 != 0 else BONE
    n //= 2
    while n != 0:
        a = bmul(a, a)
        if n % 2 != 0:
            z = bmul(z, a)
        n //= 2
    return z


def bpow(base: int, exp: int) -> int:
    """Raise a fixed-point base to a fixed-point exponent.

    Raises:
        BpowBaseOutOfRange: If base is outside [MIN_BPOW_BASE, MAX_BPOW_BASE]
    """
    if base < MIN_BPOW_BASE:
        raise BpowBaseOutOfRange(f"bpow base too low: {base}")
    if base > MAX_BPOW_BASE:
        raise BpowBaseOutOfRange(f"bpow base too high: {base}")

    whole = bfloor(exp)
    remain = bsub(exp, whole)
    whole_pow = bpowi(base, btoi(whole))
    if remain == 0:
        return whole_pow

    partial = bpow_approx(base, remain, BPOW_PRECISION)
    return bmul(whole_pow, partial)


def bpow_approx(base: int, exp: int, precision: int) -> int:
    """Binomial series for base^exp with 0 <= exp < 1."""
    a = exp
    x, x_neg = bsub_sign(base, BONE)
    term = BONE
    total = term
    negative = False

    i = 1
    while term >= precision:
        big_k = i * BONE
        c, c_neg = bsub_sign(a, bsub(big_k, BONE))
        term = bmul(term, bmul(c, x))
        term = bdiv(term, big_k)
        if term == 0:
            break

        if x_neg:
            negative = not negative
        if c_neg:
            negative = not negative
        if negative:
            total = bsub(total, term)
        else:
            total = badd(total, term)
        i += 1

    return total
