"""Self-rebalancing index pool with sqrt market-cap weighting."""

from indexpool.categories import MarketCapSortedCategories
from indexpool.config import (
    CategorySettings,
    ControllerSettings,
    OracleSettings,
    PoolSettings,
)
from indexpool.controller import MarketCapSqrtController, compute_sqrt_weights
from indexpool.ledger import Ledger
from indexpool.oracle import IndexedOracle, UniswapV2Venue
from indexpool.pool import IndexPool, TokenRecord
from indexpool.token import Token

__version__ = "0.1.0"
__all__ = [
    "IndexPool",
    "IndexedOracle",
    "Ledger",
    "MarketCapSortedCategories",
    "MarketCapSqrtController",
    "PoolSettings",
    "OracleSettings",
    "CategorySettings",
    "ControllerSettings",
    "Token",
    "TokenRecord",
    "UniswapV2Venue",
    "compute_sqrt_weights",
    "__version__",
]
