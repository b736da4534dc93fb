"""Tests for market-cap sorted token categories."""

import pytest

from indexpool.categories import MarketCapSortedCategories
from indexpool.config import CategorySettings
from indexpool.constants import ONE_DAY, ONE_HOUR
from indexpool.errors import (
    AlreadyCategorized,
    CategoryNotFound,
    CategorySize,
    EmptyCategory,
    InvalidOrder,
    MaxCategoryTokens,
    NotSorted,
    RateLimited,
    TokenNotInCategory,
)
from indexpool.ledger import Ledger
from tests.helpers import ONE, MarketSetup, make_market_setup


@pytest.fixture
def market(ledger: Ledger) -> MarketSetup:
    """Three tokens with market caps 100, 400 and 50."""
    market = make_market_setup(
        ledger,
        supplies=[100 * ONE, 100 * ONE, 50 * ONE],
        prices=[1, 4, 1],
    )
    market.observe()
    return market


@pytest.fixture
def category_id(market: MarketSetup) -> int:
    category_id = market.categories.create_category("QmCategory")
    market.categories.add_tokens(category_id, market.addresses)
    return category_id


class TestMembership:
    """Tests for creating categories and adding and removing tokens."""

    def test_ids_start_at_one(self, market: MarketSetup):
        """The first category has id 1."""
        categories = market.categories
        assert categories.category_index == 0
        assert categories.create_category() == 1
        assert categories.create_category() == 2
        assert categories.has_category(2)
        assert not categories.has_category(0)

    def test_unknown_category(self, market: MarketSetup):
        """Id 0 and ids past the last category raise CategoryNotFound."""
        with pytest.raises(CategoryNotFound):
            market.categories.add_token(0, market.addresses[0])
        with pytest.raises(CategoryNotFound):
            market.categories.get_category_tokens(1)

    def test_add_tokens(self, market: MarketSetup, category_id: int):
        """Tokens are kept in insertion order."""
        assert market.categories.get_category_tokens(category_id) == market.addresses
        assert market.categories.is_token_in_category(category_id, market.addresses[1])

    def test_token_in_one_category_only(self, market: MarketSetup, category_id: int):
        """A token already in any category cannot be added again."""
        other = market.categories.create_category()
        with pytest.raises(AlreadyCategorized):
            market.categories.add_token(other, market.addresses[0])

    def test_max_category_tokens(self, ledger: Ledger, market: MarketSetup):
        """Categories hold at most max_category_tokens tokens."""
        categories = MarketCapSortedCategories(
            ledger, market.oracle, CategorySettings(max_category_tokens=2)
        )
        category_id = categories.create_category()
        categories.add_tokens(category_id, market.addresses[:2])
        with pytest.raises(MaxCategoryTokens):
            categories.add_token(category_id, market.addresses[2])

    def test_failed_batch_adds_nothing(self, market: MarketSetup):
        """A failing add_tokens leaves the category unchanged."""
        category_id = market.categories.create_category()
        with pytest.raises(AlreadyCategorized):
            market.categories.add_tokens(category_id, [market.addresses[0], market.addresses[0]])
        assert market.categories.get_category_tokens(category_id) == []

    def test_remove_token_moves_last_into_slot(self, market: MarketSetup, category_id: int):
        """Removing the first token moves the last one to the front."""
        a, b, c = market.addresses
        market.categories.remove_token(category_id, a)
        assert market.categories.get_category_tokens(category_id) == [c, b]
        assert not market.categories.is_token_in_category(category_id, a)

    def test_removed_token_can_join_another_category(self, market: MarketSetup, category_id: int):
        """Removal frees the token for other categories."""
        token = market.addresses[2]
        market.categories.remove_token(category_id, token)
        other = market.categories.create_category()
        market.categories.add_token(other, token)
        assert market.categories.is_token_in_category(other, token)

    def test_remove_from_empty_category(self, market: MarketSetup):
        """Removing from an empty category raises EmptyCategory."""
        category_id = market.categories.create_category()
        with pytest.raises(EmptyCategory):
            market.categories.remove_token(category_id, market.addresses[0])

    def test_remove_token_not_in_category(self, market: MarketSetup):
        """Removing a non-member raises TokenNotInCategory."""
        category_id = market.categories.create_category()
        market.categories.add_token(category_id, market.addresses[0])
        with pytest.raises(TokenNotInCategory):
            market.categories.remove_token(category_id, market.addresses[1])


class TestMarketCaps:
    """Tests for market cap computation."""

    def test_market_caps(self, market: MarketSetup, category_id: int):
        """Market cap is average price times total supply."""
        caps = market.categories.get_category_market_caps(category_id)
        assert caps == [100 * ONE, 400 * ONE, 50 * ONE]
        reversed_caps = market.categories.compute_average_market_caps(market.addresses[::-1])
        assert reversed_caps == caps[::-1]

    def test_market_cap_tracks_supply(self, market: MarketSetup):
        """Minting more supply raises the market cap."""
        token = market.tokens[0]
        token.mint("0x0000000000000000000000000000000000000001", 50 * ONE)
        assert market.categories.compute_average_market_cap(token.address) == 150 * ONE

    def test_update_category_prices(self, ledger: Ledger, market: MarketSetup, category_id: int):
        """Price updates skip tokens observed within the period."""
        assert market.categories.update_category_prices(category_id) == [None, None, None]
        ledger.advance(ONE_DAY)
        results = market.categories.update_category_prices(category_id)
        assert all(r is not None for r in results)


class TestSorting:
    """Tests for ordering tokens by market cap."""

    def test_sort_helper(self, market: MarketSetup, category_id: int):
        """The helper proposes descending market-cap order."""
        a, b, c = market.addresses
        assert market.categories.sort_tokens_by_market_cap(category_id) == [b, a, c]
        # Nothing is stored
        assert market.categories.get_category_tokens(category_id) == [a, b, c]

    def test_order_and_top_tokens(self, ledger: Ledger, market: MarketSetup, category_id: int):
        """A valid ordering is stored and served by get_top_tokens."""
        a, b, c = market.addresses
        market.categories.order_tokens_by_market_cap(category_id, [b, a, c])

        assert market.categories.get_category_tokens(category_id) == [b, a, c]
        assert market.categories.get_last_category_update(category_id) == ledger.now
        assert market.categories.get_top_tokens(category_id, 2) == [b, a]

    def test_ascending_order_rejected(self, market: MarketSetup, category_id: int):
        """An order that is not descending raises InvalidOrder."""
        a, b, c = market.addresses
        with pytest.raises(InvalidOrder):
            market.categories.order_tokens_by_market_cap(category_id, [a, b, c])

    def test_non_permutation_rejected(self, market: MarketSetup, category_id: int):
        """Missing or repeated tokens raise InvalidOrder."""
        a, b, c = market.addresses
        with pytest.raises(InvalidOrder):
            market.categories.order_tokens_by_market_cap(category_id, [b, a])
        with pytest.raises(InvalidOrder):
            market.categories.order_tokens_by_market_cap(category_id, [b, a, a])

    def test_equal_caps_rejected(self, ledger: Ledger, market: MarketSetup):
        """Ties are not strictly descending."""
        twin = make_market_setup(ledger, supplies=[10 * ONE, 10 * ONE], prices=[1, 1])
        twin.observe()
        category_id = twin.categories.create_category()
        twin.categories.add_tokens(category_id, twin.addresses)
        with pytest.raises(InvalidOrder):
            twin.categories.order_tokens_by_market_cap(category_id, twin.addresses)

    def test_sort_rate_limited(self, ledger: Ledger, market: MarketSetup, category_id: int):
        """A second sort within a day raises RateLimited."""
        a, b, c = market.addresses
        market.categories.order_tokens_by_market_cap(category_id, [b, a, c])
        ledger.advance(ONE_DAY - 1)
        with pytest.raises(RateLimited):
            market.categories.order_tokens_by_market_cap(category_id, [b, a, c])
        ledger.advance(1)
        market.categories.order_tokens_by_market_cap(category_id, [b, a, c])

    def test_top_tokens_requires_recent_sort(self, ledger: Ledger, market: MarketSetup, category_id: int):
        """Unsorted or stale orderings raise NotSorted."""
        a, b, c = market.addresses
        with pytest.raises(NotSorted):
            market.categories.get_top_tokens(category_id, 2)

        market.categories.order_tokens_by_market_cap(category_id, [b, a, c])
        ledger.advance(ONE_DAY)
        with pytest.raises(NotSorted):
            market.categories.get_top_tokens(category_id, 2)

    def test_top_tokens_size(self, market: MarketSetup, category_id: int):
        """Asking for more tokens than the category holds raises CategorySize."""
        a, b, c = market.addresses
        market.categories.order_tokens_by_market_cap(category_id, [b, a, c])
        with pytest.raises(CategorySize):
            market.categories.get_top_tokens(category_id, 4)

    def test_membership_change_unsorts(self, ledger: Ledger, market: MarketSetup, category_id: int):
        """Removing a token invalidates the order and allows an immediate re-sort."""
        a, b, c = market.addresses
        market.categories.order_tokens_by_market_cap(category_id, [b, a, c])
        ledger.advance(ONE_HOUR)
        market.categories.remove_token(category_id, c)

        with pytest.raises(NotSorted):
            market.categories.get_top_tokens(category_id, 2)
        market.categories.order_tokens_by_market_cap(category_id, [b, a])
        assert market.categories.get_top_tokens(category_id, 2) == [b, a]
