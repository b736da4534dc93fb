"""Uniswap V2 style price venue.

Each tracked token trades against one reference asset in a constant-product
pair. A pair accumulates both directional prices (UQ112x112 x seconds,
wrapping at 2^224) every time its reserves change; readers get the
cumulative values extrapolated to the current timestamp without a write.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog

from indexpool.errors import UnknownPair
from indexpool.ledger import Stateful
from indexpool.math.fixed_point import UQ112x112, wrap224
from indexpool.safe_int import S

if TYPE_CHECKING:
    from indexpool.ledger import Ledger

logger = structlog.get_logger()


@dataclass(frozen=True)
class CumulativePrices:
    """Cumulative prices of a token at a timestamp.

    Attributes:
        price_cumulative: Sum of reference-per-token prices over time
        reference_price_cumulative: Sum of token-per-reference prices over time
        timestamp: Time the cumulative values refer to
    """

    price_cumulative: int
    reference_price_cumulative: int
    timestamp: int


class CumulativePriceSource(Protocol):
    """Anything that reports cumulative prices for tokens."""

    def current_cumulative_prices(self, token: str) -> CumulativePrices: ...


@dataclass
class UniswapV2Pair:
    """Constant-product pair of a token against the reference asset."""

    token: str
    reserve_token: int
    reserve_reference: int
    price_cumulative_last: int = 0
    reference_price_cumulative_last: int = 0
    timestamp_last: int = 0
    # Fee in basis points (30 = 0.3%)
    fee_bps: int = 30

    @property
    def fee_multiplier(self) -> int:
        """Fee multiplier for swap math (10000 - fee_bps)."""
        return 10000 - self.fee_bps

    def cumulative_prices_at(self, now: int) -> tuple[int, int]:
        """Cumulative prices extrapolated from the last update to `now`."""
        price_cumulative = self.price_cumulative_last
        reference_price_cumulative = self.reference_price_cumulative_last
        elapsed = now - self.timestamp_last
        if elapsed > 0 and self.reserve_token != 0 and self.reserve_reference != 0:
            price = UQ112x112.fraction(self.reserve_reference, self.reserve_token)
            reference_price = UQ112x112.fraction(self.reserve_token, self.reserve_reference)
            price_cumulative = wrap224(price_cumulative + price.raw * elapsed)
            reference_price_cumulative = wrap224(
                reference_price_cumulative + reference_price.raw * elapsed
            )
        return price_cumulative, reference_price_cumulative

    def sync(self, reserve_token: int, reserve_reference: int, now: int) -> None:
        """Accumulate prices up to `now`, then replace the reserves."""
        self.price_cumulative_last, self.reference_price_cumulative_last = (
            self.cumulative_prices_at(now)
        )
        self.timestamp_last = now
        self.reserve_token = reserve_token
        self.reserve_reference = reserve_reference

    def get_amount_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        """Constant-product output for an exact input.

        Formula: amount_out = (in * fee * res_out) / (res_in * 10000 + in * fee)
        """
        if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
            return 0
        amount_in_with_fee = S(amount_in) * S(self.fee_multiplier)
        numerator = amount_in_with_fee * S(reserve_out)
        denominator = S(reserve_in) * S(10000) + amount_in_with_fee
        return (numerator // denominator).value


class UniswapV2Venue(Stateful):
    """Collection of token/reference pairs sharing the ledger clock."""

    _state_fields = ("_pairs",)

    def __init__(self, ledger: Ledger, reference_token: str) -> None:
        self._ledger = ledger
        self.reference_token = reference_token
        self._pairs: dict[str, UniswapV2Pair] = {}
        ledger.register(self)

    def create_pair(
        self, token: str, reserve_token: int, reserve_reference: int, fee_bps: int = 30
    ) -> UniswapV2Pair:
        if token in self._pairs:
            raise ValueError(f"Pair for {token} already exists")
        pair = UniswapV2Pair(
            token=token,
            reserve_token=reserve_token,
            reserve_reference=reserve_reference,
            timestamp_last=self._ledger.now,
            fee_bps=fee_bps,
        )
        self._pairs[token] = pair
        logger.debug(
            "venue_pair_created",
            token=token,
            reserve_token=reserve_token,
            reserve_reference=reserve_reference,
        )
        return pair

    def get_pair(self, token: str) -> UniswapV2Pair:
        try:
            return self._pairs[token]
        except KeyError:
            raise UnknownPair(f"No pair for token {token}") from None

    def set_reserves(self, token: str, reserve_token: int, reserve_reference: int) -> None:
        """Replace a pair's reserves, accumulating the old price up to now."""
        self.get_pair(token).sync(reserve_token, reserve_reference, self._ledger.now)

    def swap_reference_for_token(self, token: str, amount_in: int) -> int:
        """Buy `token` with an exact amount of the reference asset."""
        pair = self.get_pair(token)
        amount_out = pair.get_amount_out(amount_in, pair.reserve_reference, pair.reserve_token)
        pair.sync(
            pair.reserve_token - amount_out, pair.reserve_reference + amount_in, self._ledger.now
        )
        return amount_out

    def swap_token_for_reference(self, token: str, amount_in: int) -> int:
        """Sell an exact amount of `token` for the reference asset."""
        pair = self.get_pair(token)
        amount_out = pair.get_amount_out(amount_in, pair.reserve_token, pair.reserve_reference)
        pair.sync(
            pair.reserve_token + amount_in, pair.reserve_reference - amount_out, self._ledger.now
        )
        return amount_out

    def current_cumulative_prices(self, token: str) -> CumulativePrices:
        now = self._ledger.now
        price_cumulative, reference_price_cumulative = self.get_pair(token).cumulative_prices_at(
            now
        )
        return CumulativePrices(price_cumulative, reference_price_cumulative, now)
