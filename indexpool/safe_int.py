"""Checked integer wrapper for token amounts and fixed-point values.

SafeInt makes the failure modes of unsigned on-chain arithmetic explicit:
- Division by zero raises DivisionByZero
- Subtraction underflow raises Underflow
- Values beyond uint256 raise Uint256Overflow on conversion

Usage pattern:
    from indexpool.safe_int import S

    def scale(amount: int, num: int, den: int) -> int:
        return ((S(amount) * num) // den).to_uint256()
"""

from __future__ import annotations

from indexpool.errors import IndexPoolError

UINT256_MAX = 2**256 - 1


class SafeIntError(IndexPoolError, ArithmeticError):
    """Base class for checked arithmetic errors."""

    pass


class DivisionByZero(SafeIntError):
    """Division or modulo by zero."""

    pass


class Underflow(SafeIntError):
    """Subtraction would produce a negative result."""

    pass


class Uint256Overflow(SafeIntError):
    """Value exceeds the uint256 maximum."""

    pass


class SafeInt:
    """Integer with checked arithmetic.

    Attributes:
        value: The underlying integer value (read-only)
    """

    __slots__ = ("_value",)
    _value: int

    def __init__(self, value: int | SafeInt) -> None:
        if isinstance(value, SafeInt):
            self._value = value._value
        elif isinstance(value, int) and not isinstance(value, bool):
            self._value = value
        else:
            raise TypeError(f"SafeInt requires int, got {type(value).__name__}")

    @property
    def value(self) -> int:
        return self._value

    def __repr__(self) -> str:
        return f"SafeInt({self._value})"

    def __hash__(self) -> int:
        return hash(self._value)

    def __add__(self, other: SafeInt | int) -> SafeInt:
        return SafeInt(self._value + _extract_value(other))

    def __radd__(self, other: int) -> SafeInt:
        return SafeInt(other + self._value)

    def __sub__(self, other: SafeInt | int) -> SafeInt:
        """Subtract other from self.

        Raises:
            Underflow: If the result would be negative
        """
        other_val = _extract_value(other)
        if other_val > self._value:
            raise Underflow(f"Underflow: {self._value} - {other_val}")
        return SafeInt(self._value - other_val)

    def __mul__(self, other: SafeInt | int) -> SafeInt:
        return SafeInt(self._value * _extract_value(other))

    def __rmul__(self, other: int) -> SafeInt:
        return SafeInt(other * self._value)

    def __floordiv__(self, other: SafeInt | int) -> SafeInt:
        """Integer division.

        Raises:
            DivisionByZero: If other is zero
        """
        other_val = _extract_value(other)
        if other_val == 0:
            raise DivisionByZero(f"Division by zero: {self._value} // 0")
        return SafeInt(self._value // other_val)

    def __rshift__(self, bits: int) -> SafeInt:
        return SafeInt(self._value >> bits)

    def __lshift__(self, bits: int) -> SafeInt:
        return SafeInt(self._value << bits)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SafeInt):
            return self._value == other._value
        if isinstance(other, int):
            return self._value == other
        return NotImplemented

    def __lt__(self, other: SafeInt | int) -> bool:
        return self._value < _extract_value(other)

    def __le__(self, other: SafeInt | int) -> bool:
        return self._value <= _extract_value(other)

    def __gt__(self, other: SafeInt | int) -> bool:
        return self._value > _extract_value(other)

    def __ge__(self, other: SafeInt | int) -> bool:
        return self._value >= _extract_value(other)

    def __int__(self) -> int:
        return self._value

    def __bool__(self) -> bool:
        return self._value != 0

    def to_uint(self, bits: int = 256) -> int:
        """Convert to int, validating the unsigned range of the given width.

        Raises:
            Uint256Overflow: If the value is negative or does not fit in `bits`
        """
        if self._value < 0:
            raise Uint256Overflow(f"Negative value cannot be unsigned: {self._value}")
        if self._value >> bits:
            raise Uint256Overflow(f"Value exceeds uint{bits} max: {self._value}")
        return self._value

    def to_uint256(self) -> int:
        """Convert to int, validating uint256 bounds."""
        return self.to_uint(256)


def _extract_value(x: SafeInt | int) -> int:
    if isinstance(x, SafeInt):
        return x._value
    return x


# Convenience alias for concise code
S = SafeInt
