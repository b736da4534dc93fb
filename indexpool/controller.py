"""Controller that keeps index pools weighted by sqrt(market cap).

The controller creates pools for the top tokens of a category and
periodically retargets them:

- reweigh_pool: new desired weights for the pool's current tokens
- reindex_pool: new token set from the category's latest ordering

Desired weights are the square root of each token's long-window average
market cap, normalized and scaled to WEIGHT_MULTIPLIER. Token amounts are
derived from short-window average prices.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from indexpool.config import ControllerSettings, PoolSettings
from indexpool.constants import (
    MAX_BOUND_TOKENS,
    MIN_BALANCE,
    MIN_BALANCE_POOL_SHARE_DIVISOR,
    MIN_BOUND_TOKENS,
    WEIGHT_MULTIPLIER,
)
from indexpool.errors import (
    DuplicateInitialization,
    InvalidIndexSize,
    MinBalance,
    NotInitialized,
    PoolNotFound,
    RateLimited,
)
from indexpool.ledger import Stateful
from indexpool.math.fixed_point import UQ112x112
from indexpool.pool import IndexPool

if TYPE_CHECKING:
    from indexpool.categories import MarketCapSortedCategories
    from indexpool.ledger import Ledger
    from indexpool.oracle.oracle import IndexedOracle
    from indexpool.pool import UnbindHandler

logger = structlog.get_logger()


@dataclass
class PoolMeta:
    """Controller-side bookkeeping for a managed pool."""

    category_id: int
    index_size: int
    initialized: bool = False
    last_reweigh: int = 0
    last_reindex: int = 0


def compute_sqrt_weights(market_caps: list[int]) -> list[UQ112x112]:
    """Normalized square roots of market caps.

    Example:
        compute_sqrt_weights([100, 144]) -> [10/22, 12/22]
    """
    roots = [math.isqrt(cap) for cap in market_caps]
    total = sum(roots)
    return [UQ112x112.fraction(root, total) for root in roots]


def weight_to_denorm(weight: UQ112x112) -> int:
    return weight.mul(WEIGHT_MULTIPLIER).decode144()


class MarketCapSqrtController(Stateful):
    """Creates and rebalances sqrt-market-cap weighted index pools.

    Args:
        ledger: Ledger supplying the clock and atomic execution
        categories: Category registry, also the route to the oracle
        unbind_handler: Receiver of tokens removed from managed pools
        settings: Rate limits for reweighing and reindexing
        pool_settings: Settings passed to every pool the controller creates
    """

    _state_fields = ("_meta",)
    _ref_fields = ("_pools",)

    def __init__(
        self,
        ledger: Ledger,
        categories: MarketCapSortedCategories,
        unbind_handler: UnbindHandler,
        settings: ControllerSettings | None = None,
        pool_settings: PoolSettings | None = None,
    ) -> None:
        self._ledger = ledger
        self.address = ledger.new_address()
        self.categories = categories
        self.unbind_handler = unbind_handler
        self.settings = settings or ControllerSettings()
        self.pool_settings = pool_settings or PoolSettings()
        self._meta: dict[str, PoolMeta] = {}
        self._pools: dict[str, IndexPool] = {}
        ledger.register(self)

    @property
    def oracle(self) -> IndexedOracle:
        return self.categories.oracle

    # =========================================================================
    # Pool creation
    # =========================================================================

    def get_initial_tokens_and_balances(
        self, category_id: int, index_size: int, total_value: int
    ) -> tuple[list[str], list[int]]:
        """Top tokens of a category and the balances worth `total_value` in total.

        Raises:
            MinBalance: If any computed balance is below MIN_BALANCE
        """
        tokens = self.categories.get_top_tokens(category_id, index_size)
        weights = compute_sqrt_weights(self.categories.compute_average_market_caps(tokens))
        prices = self._short_twap_prices(tokens)

        balances = []
        for token, weight, price in zip(tokens, weights, prices):
            balance = price.reciprocal().mul(weight.mul(total_value).decode144()).decode144()
            if balance < MIN_BALANCE:
                raise MinBalance(f"Initial balance {balance} of {token} is below MIN_BALANCE")
            balances.append(balance)
        return tokens, balances

    def prepare_pool(
        self,
        category_id: int,
        index_size: int,
        initial_value: int,
        name: str = "",
        symbol: str = "",
    ) -> tuple[IndexPool, list[str], list[int]]:
        """Create an uninitialized pool for the top tokens of a category.

        Returns:
            The pool, with the tokens and balances it should be initialized with
        """
        if index_size < MIN_BOUND_TOKENS or index_size > MAX_BOUND_TOKENS:
            raise InvalidIndexSize(
                f"Index size {index_size} outside [{MIN_BOUND_TOKENS}, {MAX_BOUND_TOKENS}]"
            )
        with self._ledger.atomic():
            tokens, balances = self.get_initial_tokens_and_balances(
                category_id, index_size, initial_value
            )
            pool = IndexPool(
                self._ledger, self.address, name=name, symbol=symbol, settings=self.pool_settings
            )
            self._pools[pool.address] = pool
            self._meta[pool.address] = PoolMeta(category_id=category_id, index_size=index_size)
            logger.info(
                "pool_prepared",
                pool=pool.address,
                category_id=category_id,
                index_size=index_size,
                tokens=tokens,
            )
            return pool, tokens, balances

    def finish_initialization(
        self, caller: str, pool: IndexPool, tokens: list[str], balances: list[int]
    ) -> None:
        """Initialize a prepared pool with balances supplied by `caller`.

        Weights are each token's share of the total value of the balances.
        The caller receives the initial pool shares.

        Raises:
            PoolNotFound: If the pool was not prepared by this controller
            DuplicateInitialization: If the pool is already initialized
        """
        with self._ledger.atomic():
            meta = self._get_meta(pool)
            if meta.initialized:
                raise DuplicateInitialization(f"{pool!r} is already initialized")

            settings = self.oracle.settings
            values = [
                self.oracle.compute_average_value_for_tokens(
                    token,
                    balance,
                    settings.short_twap_min_time_elapsed,
                    settings.short_twap_max_time_elapsed,
                )
                for token, balance in zip(tokens, balances)
            ]
            total_value = sum(values)
            denorms = [weight_to_denorm(UQ112x112.fraction(value, total_value)) for value in values]

            pool.initialize(self.address, tokens, balances, denorms, caller, self.unbind_handler)
            now = self._ledger.now
            meta.initialized = True
            meta.last_reweigh = now
            meta.last_reindex = now
            logger.info("pool_initialization_finished", pool=pool.address, denorms=denorms)

    # =========================================================================
    # Rebalancing
    # =========================================================================

    def reweigh_pool(self, pool: IndexPool) -> None:
        """Retarget the weights of the pool's current tokens.

        Raises:
            RateLimited: If the pool was reweighed within the reweigh delay
        """
        with self._ledger.atomic():
            meta = self._get_initialized_meta(pool)
            now = self._ledger.now
            if now - meta.last_reweigh < self.settings.reweigh_delay:
                raise RateLimited(f"{pool!r} was reweighed {now - meta.last_reweigh}s ago")

            tokens = pool.get_current_desired_tokens()
            weights = compute_sqrt_weights(self.categories.compute_average_market_caps(tokens))
            denorms = [weight_to_denorm(weight) for weight in weights]
            pool.reweigh_tokens(self.address, tokens, denorms)
            meta.last_reweigh = now
            logger.info("pool_reweigh_requested", pool=pool.address, tokens=tokens, denorms=denorms)

    def reindex_pool(self, pool: IndexPool) -> None:
        """Retarget the pool to the category's current top tokens.

        Tokens leaving the index get a desired weight of zero. Tokens
        entering it are bound with a minimum balance worth a fixed share of
        the pool's value.

        Raises:
            RateLimited: If the pool was reindexed within the reindex delay
        """
        with self._ledger.atomic():
            meta = self._get_initialized_meta(pool)
            now = self._ledger.now
            if now - meta.last_reindex < self.settings.reindex_delay:
                raise RateLimited(f"{pool!r} was reindexed {now - meta.last_reindex}s ago")

            tokens = self.categories.get_top_tokens(meta.category_id, meta.index_size)
            weights = compute_sqrt_weights(self.categories.compute_average_market_caps(tokens))
            denorms = [weight_to_denorm(weight) for weight in weights]

            current = pool.get_current_tokens()
            entering = [t for t in tokens if t not in current]
            leaving = [t for t in current if t not in tokens]

            minimum_balances = [0] * len(tokens)
            if entering:
                prices = dict(zip(entering, self._short_twap_prices(entering)))
                min_value = self._extrapolate_pool_value(pool) // MIN_BALANCE_POOL_SHARE_DIVISOR
                for i, token in enumerate(tokens):
                    if token in prices:
                        minimum_balances[i] = prices[token].reciprocal().mul(min_value).decode144()

            pool.reindex_tokens(self.address, tokens, denorms, minimum_balances)
            meta.last_reindex = now
            meta.last_reweigh = now
            logger.info(
                "pool_reindex_requested",
                pool=pool.address,
                tokens=tokens,
                entering=entering,
                leaving=leaving,
            )

    def update_minimum_balance(self, pool: IndexPool, token: str) -> None:
        """Recompute the minimum balance of a not-ready token from current prices."""
        with self._ledger.atomic():
            self._get_initialized_meta(pool)
            # Raises TokenReady for tokens that no longer need a minimum
            pool.get_minimum_balance(token)
            price = self._short_twap_prices([token])[0]
            min_value = self._extrapolate_pool_value(pool) // MIN_BALANCE_POOL_SHARE_DIVISOR
            minimum_balance = price.reciprocal().mul(min_value).decode144()
            pool.set_minimum_balance(self.address, token, minimum_balance)

    def set_swap_fee(self, pool: IndexPool, swap_fee: int) -> None:
        self._get_meta(pool)
        pool.set_swap_fee(self.address, swap_fee)

    # =========================================================================
    # Registry
    # =========================================================================

    def get_pool_meta(self, pool: IndexPool) -> PoolMeta:
        meta = self._get_meta(pool)
        return PoolMeta(**vars(meta))

    def get_pools(self) -> list[IndexPool]:
        return list(self._pools.values())

    def _get_meta(self, pool: IndexPool) -> PoolMeta:
        meta = self._meta.get(pool.address)
        if meta is None:
            raise PoolNotFound(f"{pool!r} is not managed by this controller")
        return meta

    def _get_initialized_meta(self, pool: IndexPool) -> PoolMeta:
        meta = self._get_meta(pool)
        if not meta.initialized:
            raise NotInitialized(f"{pool!r} is not initialized")
        return meta

    # =========================================================================
    # Pricing helpers
    # =========================================================================

    def _short_twap_prices(self, tokens: list[str]) -> list[UQ112x112]:
        settings = self.oracle.settings
        return self.oracle.compute_average_token_prices(
            tokens,
            settings.short_twap_min_time_elapsed,
            settings.short_twap_max_time_elapsed,
        )

    def _extrapolate_pool_value(self, pool: IndexPool) -> int:
        """Total pool value estimated from its first ready token.

        The token's value is scaled by total_weight / weight; with balanced
        weights every token holds the same share of value as of weight.
        """
        for token in pool.get_current_tokens():
            record = pool.get_token_record(token)
            if not record.ready:
                continue
            price = self._short_twap_prices([token])[0]
            value = price.mul(record.balance).decode144()
            return value * pool.get_total_denormalized_weight() // record.denorm
        raise NotInitialized(f"{pool!r} has no ready tokens")
