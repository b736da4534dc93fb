"""Token categories sorted by market capitalization.

A category is an ordered list of up to MAX_CATEGORY_TOKENS tokens. Anyone
may propose a new ordering once per sort period; it is accepted only if it
is a permutation of the category and strictly descending by the market caps
the oracle reports at that moment. Consumers read the top N tokens from the
last accepted ordering.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from indexpool.config import CategorySettings
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
from indexpool.ledger import Stateful

if TYPE_CHECKING:
    from indexpool.ledger import Ledger
    from indexpool.oracle.oracle import IndexedOracle, PriceObservation

logger = structlog.get_logger()


@dataclass
class Category:
    """A set of related tokens in market-cap order."""

    id: int
    metadata_hash: str
    tokens: list[str] = field(default_factory=list)
    last_sorted: int = 0


class MarketCapSortedCategories(Stateful):
    """Registry of market-cap sorted token categories.

    Args:
        ledger: Ledger supplying the clock and token supplies
        oracle: Oracle used for average prices
        settings: Category size and sort delay
    """

    _state_fields = ("_categories", "_token_category")

    def __init__(
        self,
        ledger: Ledger,
        oracle: IndexedOracle,
        settings: CategorySettings | None = None,
    ) -> None:
        self._ledger = ledger
        self.oracle = oracle
        self.settings = settings or CategorySettings()
        self._categories: list[Category] = []
        self._token_category: dict[str, int] = {}
        ledger.register(self)

    # =========================================================================
    # Membership
    # =========================================================================

    def create_category(self, metadata_hash: str = "") -> int:
        """Create an empty category and return its id (ids start at 1)."""
        category = Category(id=len(self._categories) + 1, metadata_hash=metadata_hash)
        self._categories.append(category)
        logger.info("category_created", category_id=category.id, metadata_hash=metadata_hash)
        return category.id

    @property
    def category_index(self) -> int:
        """Highest category id in use."""
        return len(self._categories)

    def has_category(self, category_id: int) -> bool:
        return 1 <= category_id <= len(self._categories)

    def add_token(self, category_id: int, token: str) -> None:
        """Add a token to a category.

        Raises:
            CategoryNotFound: If the category does not exist
            AlreadyCategorized: If the token is in any category
            MaxCategoryTokens: If the category is full
        """
        with self._ledger.atomic():
            self._add_token(self._get_category(category_id), token)

    def add_tokens(self, category_id: int, tokens: list[str]) -> None:
        with self._ledger.atomic():
            category = self._get_category(category_id)
            for token in tokens:
                self._add_token(category, token)

    def remove_token(self, category_id: int, token: str) -> None:
        """Remove a token, moving the last token into its slot.

        Raises:
            EmptyCategory: If the category has no tokens
            TokenNotInCategory: If the token is not in this category
        """
        with self._ledger.atomic():
            category = self._get_category(category_id)
            if not category.tokens:
                raise EmptyCategory(f"Category {category_id} is empty")
            if self._token_category.get(token) != category_id:
                raise TokenNotInCategory(f"Token {token} is not in category {category_id}")

            index = category.tokens.index(token)
            last = category.tokens.pop()
            if index < len(category.tokens):
                category.tokens[index] = last
            del self._token_category[token]
            category.last_sorted -= self.settings.sort_delay
            logger.info("category_token_removed", category_id=category_id, token=token)

    def is_token_in_category(self, category_id: int, token: str) -> bool:
        self._get_category(category_id)
        return self._token_category.get(token) == category_id

    def get_category_tokens(self, category_id: int) -> list[str]:
        return list(self._get_category(category_id).tokens)

    def get_last_category_update(self, category_id: int) -> int:
        """Timestamp of the last accepted ordering."""
        return self._get_category(category_id).last_sorted

    # =========================================================================
    # Prices and market caps
    # =========================================================================

    def update_category_prices(self, category_id: int) -> list[PriceObservation | None]:
        """Record oracle observations for every token that can be updated."""
        tokens = self.get_category_tokens(category_id)
        return self.oracle.update_prices(tokens, allow_partial=True)

    def compute_average_market_cap(self, token: str) -> int:
        """Long-window average price times total supply, in reference units."""
        settings = self.oracle.settings
        price = self.oracle.compute_average_token_price(
            token,
            settings.long_twap_min_time_elapsed,
            settings.long_twap_max_time_elapsed,
        )
        total_supply = self._ledger.get_token(token).total_supply
        return price.mul(total_supply).decode144()

    def compute_average_market_caps(self, tokens: list[str]) -> list[int]:
        return [self.compute_average_market_cap(token) for token in tokens]

    def get_category_market_caps(self, category_id: int) -> list[int]:
        return self.compute_average_market_caps(self.get_category_tokens(category_id))

    # =========================================================================
    # Sorting
    # =========================================================================

    def sort_tokens_by_market_cap(self, category_id: int) -> list[str]:
        """Compute the descending market-cap order without storing it."""
        tokens = self.get_category_tokens(category_id)
        caps = self.compute_average_market_caps(tokens)
        ranked = sorted(zip(caps, range(len(tokens))), key=lambda pair: pair[0], reverse=True)
        return [tokens[i] for _, i in ranked]

    def order_tokens_by_market_cap(self, category_id: int, proposed_order: list[str]) -> None:
        """Store a new ordering for a category.

        Raises:
            RateLimited: If the category was sorted within the sort delay
            InvalidOrder: If the proposal is not a permutation of the category or
                is not strictly descending by current market cap
        """
        with self._ledger.atomic():
            category = self._get_category(category_id)
            now = self._ledger.now
            if now - category.last_sorted < self.settings.sort_delay:
                raise RateLimited(f"Category {category_id} was sorted {now - category.last_sorted}s ago")

            if len(proposed_order) != len(category.tokens) or set(proposed_order) != set(
                category.tokens
            ):
                raise InvalidOrder(f"Proposal is not a permutation of category {category_id}")

            caps = self.compute_average_market_caps(proposed_order)
            for i in range(1, len(caps)):
                if caps[i] >= caps[i - 1]:
                    raise InvalidOrder(
                        f"Token {proposed_order[i]} market cap {caps[i]} is not below "
                        f"{proposed_order[i - 1]} market cap {caps[i - 1]}"
                    )

            category.tokens = list(proposed_order)
            category.last_sorted = now
            logger.info("category_sorted", category_id=category_id, tokens=category.tokens)

    def get_top_tokens(self, category_id: int, num: int) -> list[str]:
        """The `num` largest tokens of a recently sorted category.

        Raises:
            CategorySize: If num exceeds the category size
            NotSorted: If the category was not sorted within the sort delay
        """
        category = self._get_category(category_id)
        if num > len(category.tokens):
            raise CategorySize(f"Category {category_id} has {len(category.tokens)} tokens, wanted {num}")
        if self._ledger.now - category.last_sorted >= self.settings.sort_delay:
            raise NotSorted(f"Category {category_id} has not been sorted recently")
        return category.tokens[:num]

    # =========================================================================
    # Internal
    # =========================================================================

    def _get_category(self, category_id: int) -> Category:
        if not self.has_category(category_id):
            raise CategoryNotFound(f"Category {category_id} does not exist")
        return self._categories[category_id - 1]

    def _add_token(self, category: Category, token: str) -> None:
        if token in self._token_category:
            raise AlreadyCategorized(
                f"Token {token} is already in category {self._token_category[token]}"
            )
        if len(category.tokens) >= self.settings.max_category_tokens:
            raise MaxCategoryTokens(f"Category {category.id} is full")
        category.tokens.append(token)
        self._token_category[token] = category.id
        category.last_sorted -= self.settings.sort_delay
        logger.info("category_token_added", category_id=category.id, token=token)
