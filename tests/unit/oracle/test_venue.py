"""Tests for the Uniswap V2 style price venue."""

import pytest

from indexpool.errors import UnknownPair
from indexpool.ledger import Ledger
from indexpool.math.fixed_point import Q112, Q224
from indexpool.oracle import UniswapV2Venue
from tests.helpers import ONE, WETH

TOKEN = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def venue(ledger: Ledger) -> UniswapV2Venue:
    venue = UniswapV2Venue(ledger, WETH)
    venue.create_pair(TOKEN, reserve_token=1000 * ONE, reserve_reference=2000 * ONE)
    return venue


class TestPairMath:
    """Tests for constant-product swaps."""

    def test_get_amount_out(self, venue: UniswapV2Venue):
        """Output follows the 0.3% fee constant-product formula."""
        pair = venue.get_pair(TOKEN)
        amount_in = 10 * ONE
        expected = (amount_in * 9970 * 2000 * ONE) // (1000 * ONE * 10000 + amount_in * 9970)
        assert pair.get_amount_out(amount_in, 1000 * ONE, 2000 * ONE) == expected

    def test_get_amount_out_zero_input(self, venue: UniswapV2Venue):
        """Zero input or empty reserves give zero output."""
        pair = venue.get_pair(TOKEN)
        assert pair.get_amount_out(0, ONE, ONE) == 0
        assert pair.get_amount_out(ONE, 0, ONE) == 0

    def test_swap_moves_reserves(self, venue: UniswapV2Venue):
        """Buying the token lowers its reserve and raises the reference reserve."""
        amount_out = venue.swap_reference_for_token(TOKEN, 100 * ONE)
        pair = venue.get_pair(TOKEN)
        assert pair.reserve_token == 1000 * ONE - amount_out
        assert pair.reserve_reference == 2100 * ONE

    def test_unknown_pair(self, venue: UniswapV2Venue):
        """Reading a token without a pair raises UnknownPair."""
        with pytest.raises(UnknownPair):
            venue.current_cumulative_prices("0x2222222222222222222222222222222222222222")

    def test_duplicate_pair(self, venue: UniswapV2Venue):
        """A token can only have one pair."""
        with pytest.raises(ValueError):
            venue.create_pair(TOKEN, ONE, ONE)


class TestCumulativePrices:
    """Tests for price accumulation."""

    def test_extrapolates_to_now(self, ledger: Ledger, venue: UniswapV2Venue):
        """Reads include the time since the last reserve change."""
        start = venue.current_cumulative_prices(TOKEN)
        assert start.price_cumulative == 0

        ledger.advance(100)
        current = venue.current_cumulative_prices(TOKEN)
        assert current.price_cumulative == 2 * Q112 * 100
        assert current.reference_price_cumulative == (Q112 // 2) * 100
        assert current.timestamp == ledger.now

    def test_set_reserves_accumulates_old_price(self, ledger: Ledger, venue: UniswapV2Venue):
        """The old price counts up to the reserve change, the new one after it."""
        ledger.advance(100)
        venue.set_reserves(TOKEN, 1000 * ONE, 4000 * ONE)
        ledger.advance(100)
        current = venue.current_cumulative_prices(TOKEN)
        assert current.price_cumulative == 2 * Q112 * 100 + 4 * Q112 * 100

    def test_wraps_at_224_bits(self, ledger: Ledger, venue: UniswapV2Venue):
        """Cumulative values are stored modulo 2^224."""
        pair = venue.get_pair(TOKEN)
        pair.price_cumulative_last = Q224 - 1
        ledger.advance(1)
        assert venue.current_cumulative_prices(TOKEN).price_cumulative == 2 * Q112 - 1
