"""TWAP price oracle and the venue it reads from."""

from indexpool.oracle.oracle import IndexedOracle, PriceObservation, TwoWayAveragePrice
from indexpool.oracle.venue import CumulativePrices, CumulativePriceSource, UniswapV2Venue

__all__ = [
    "IndexedOracle",
    "PriceObservation",
    "TwoWayAveragePrice",
    "CumulativePrices",
    "CumulativePriceSource",
    "UniswapV2Venue",
]
