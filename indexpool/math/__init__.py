"""Mathematical primitives for the index pool.

- UQ112x112: binary fixed-point prices and weight fractions
- bnum: 18-decimal fixed-point arithmetic for balances and weights
"""

from indexpool.math.bnum import bdiv, bmul, bpow
from indexpool.math.fixed_point import UQ112x112, UQ144x112

__all__ = ["UQ112x112", "UQ144x112", "bdiv", "bmul", "bpow"]
