"""Test helpers module for shared test utilities.

- constants: Account addresses and common amounts
- factories: Pool, token and market factory functions
"""

from tests.helpers.constants import (
    BORROWER,
    CONTROLLER,
    FEE_RECIPIENT,
    NO_PRICE_LIMIT,
    ONE,
    PROVIDER,
    TRADER,
    TRADER_FUNDS,
    UNBIND_HANDLER,
    WETH,
)
from tests.helpers.factories import (
    MarketSetup,
    PoolSetup,
    RecordingUnbindHandler,
    make_market_setup,
    make_pool_setup,
    make_token,
)

__all__ = [
    # Constants
    "BORROWER",
    "CONTROLLER",
    "FEE_RECIPIENT",
    "NO_PRICE_LIMIT",
    "ONE",
    "PROVIDER",
    "TRADER",
    "TRADER_FUNDS",
    "UNBIND_HANDLER",
    "WETH",
    # Factories
    "MarketSetup",
    "PoolSetup",
    "RecordingUnbindHandler",
    "make_market_setup",
    "make_pool_setup",
    "make_token",
]
