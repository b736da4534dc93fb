"""Binary fixed-point numbers with 112 fractional bits.

UQ112x112 values hold prices and weight fractions; UQ144x112 is the widened
result of multiplying a UQ112x112 by an integer, truncated back to an
integer with decode144(). Cumulative prices are stored modulo 2^224 and are
differenced with sub_wrapped(), which stays correct across wraparound.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from indexpool.safe_int import DivisionByZero, S, Uint256Overflow

__all__ = [
    # Classes
    "UQ112x112",
    "UQ144x112",
    # Functions
    "sub_wrapped",
    "wrap224",
    # Constants
    "RESOLUTION",
    "Q112",
    "Q224",
    "UINT224_MAX",
]

# =============================================================================
# Constants
# =============================================================================

RESOLUTION = 112
Q112 = 1 << RESOLUTION
Q224 = 1 << (2 * RESOLUTION)
UINT224_MAX = Q224 - 1
UINT112_MAX = Q112 - 1


# =============================================================================
# Wrapping arithmetic for cumulative prices
# =============================================================================


def wrap224(x: int) -> int:
    """Reduce a value modulo 2^224."""
    return x % Q224


def sub_wrapped(newer: int, older: int) -> int:
    """Difference of two 224-bit cumulative values, modulo 2^224.

    The result is correct as long as the true difference fits in 224 bits,
    even if the newer value has wrapped past zero.
    """
    return (newer - older) % Q224


# =============================================================================
# Fixed-point types
# =============================================================================


@dataclass(frozen=True, order=True)
class UQ144x112:
    """Unsigned 144.112 fixed-point product."""

    raw: int

    def decode144(self) -> int:
        """Truncate the fractional part."""
        return self.raw >> RESOLUTION


@dataclass(frozen=True, order=True)
class UQ112x112:
    """Unsigned 112.112 fixed-point number.

    Attributes:
        raw: Encoded value, the real number multiplied by 2^112
    """

    raw: int

    def __post_init__(self) -> None:
        if self.raw < 0 or self.raw > UINT224_MAX:
            raise Uint256Overflow(f"UQ112x112 out of range: {self.raw}")

    @classmethod
    def encode(cls, x: int) -> UQ112x112:
        """Encode an integer below 2^112."""
        if x < 0 or x > UINT112_MAX:
            raise Uint256Overflow(f"Cannot encode {x} as UQ112x112")
        return cls(x << RESOLUTION)

    @classmethod
    def fraction(cls, numerator: int, denominator: int) -> UQ112x112:
        """Encode numerator / denominator.

        Raises:
            DivisionByZero: If denominator is zero
            Uint256Overflow: If the quotient does not fit in 224 bits
        """
        result = (S(numerator) << RESOLUTION) // denominator
        return cls(result.to_uint(224))

    def mul(self, y: int) -> UQ144x112:
        """Multiply by an unsigned integer.

        Raises:
            Uint256Overflow: If the product does not fit in 256 bits
        """
        return UQ144x112((S(self.raw) * y).to_uint256())

    def decode(self) -> int:
        """Integer part of the value."""
        return self.raw >> RESOLUTION

    def reciprocal(self) -> UQ112x112:
        """Return 1 / self.

        Raises:
            DivisionByZero: If self is zero
            Uint256Overflow: If the reciprocal does not fit in 224 bits
        """
        if self.raw == 0:
            raise DivisionByZero("Reciprocal of zero")
        if self.raw == 1:
            raise Uint256Overflow("Reciprocal of the smallest UQ112x112 overflows")
        return UQ112x112(Q224 // self.raw)

    def to_decimal(self) -> Decimal:
        """Exact decimal value, for display and tests."""
        return Decimal(self.raw) / Decimal(Q112)

    def __str__(self) -> str:
        return str(self.to_decimal())
