"""Pytest configuration and fixtures."""

import pytest

from indexpool.ledger import Ledger
from tests.helpers import ONE, PoolSetup, make_pool_setup


@pytest.fixture
def ledger() -> Ledger:
    """Fresh ledger with the clock at the default start time."""
    return Ledger()


@pytest.fixture
def two_token_pool(ledger: Ledger) -> PoolSetup:
    """Two tokens, 100 each, equal weights of 5."""
    return make_pool_setup(ledger, balances=[100 * ONE, 100 * ONE], denorms=[5 * ONE, 5 * ONE])


@pytest.fixture
def three_token_pool(ledger: Ledger) -> PoolSetup:
    """Three tokens, 100 each, weights 1, 1 and 2."""
    return make_pool_setup(
        ledger,
        balances=[100 * ONE, 100 * ONE, 100 * ONE],
        denorms=[ONE, ONE, 2 * ONE],
    )
