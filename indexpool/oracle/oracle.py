"""Time-weighted average price oracle.

The oracle records cumulative price observations for each token, at most
one per observation period, and derives average prices between the latest
observation and an earlier one. Two prices are tracked per token:

- price: reference asset per token (used for market caps and token values)
- reference price: tokens per reference asset (used for token amounts)
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from indexpool.config import OracleSettings
from indexpool.errors import InsufficientHistory, RateLimited, StalePrice
from indexpool.ledger import Stateful
from indexpool.math.fixed_point import UQ112x112, sub_wrapped

if TYPE_CHECKING:
    from indexpool.ledger import Ledger
    from indexpool.oracle.venue import CumulativePriceSource

logger = structlog.get_logger()


@dataclass(frozen=True)
class PriceObservation:
    """Cumulative prices recorded at a timestamp."""

    timestamp: int
    price_cumulative: int
    reference_price_cumulative: int


@dataclass(frozen=True)
class TwoWayAveragePrice:
    """Average prices in both directions over one observation window."""

    price_average: UQ112x112
    reference_price_average: UQ112x112


class IndexedOracle(Stateful):
    """TWAP oracle over a cumulative price source.

    Args:
        ledger: Ledger supplying the clock and atomic execution
        source: Venue reporting cumulative prices
        settings: Observation period and TWAP windows
    """

    _state_fields = ("_observations",)

    def __init__(
        self,
        ledger: Ledger,
        source: CumulativePriceSource,
        settings: OracleSettings | None = None,
    ) -> None:
        self._ledger = ledger
        self._source = source
        self.settings = settings or OracleSettings()
        self._observations: dict[str, list[PriceObservation]] = {}
        ledger.register(self)

    # =========================================================================
    # Updates
    # =========================================================================

    def can_update_price(self, token: str) -> bool:
        """True if a new observation for token would be accepted now."""
        latest = self._latest(token)
        if latest is None:
            return True
        return self._ledger.now - latest.timestamp >= self.settings.observation_period

    def update_price(self, token: str) -> PriceObservation:
        """Record the token's current cumulative prices.

        Raises:
            RateLimited: If the latest observation is younger than the observation period
        """
        latest = self._latest(token)
        now = self._ledger.now
        if latest is not None and now - latest.timestamp < self.settings.observation_period:
            raise RateLimited(
                f"Price of {token} observed {now - latest.timestamp}s ago, "
                f"period is {self.settings.observation_period}s"
            )

        current = self._source.current_cumulative_prices(token)
        observation = PriceObservation(
            timestamp=now,
            price_cumulative=current.price_cumulative,
            reference_price_cumulative=current.reference_price_cumulative,
        )
        self._observations.setdefault(token, []).append(observation)
        logger.debug("oracle_price_updated", token=token, timestamp=now)
        return observation

    def update_prices(
        self, tokens: list[str], *, allow_partial: bool = False
    ) -> list[PriceObservation | None]:
        """Record observations for several tokens.

        Args:
            tokens: Tokens to observe
            allow_partial: Skip rate-limited tokens (returned as None) instead of
                failing the whole batch

        Returns:
            One entry per token, None where the token was skipped
        """
        with self._ledger.atomic():
            results: list[PriceObservation | None] = []
            for token in tokens:
                if allow_partial and not self.can_update_price(token):
                    logger.debug("oracle_update_skipped", token=token)
                    results.append(None)
                    continue
                results.append(self.update_price(token))
            return results

    # =========================================================================
    # Observation queries
    # =========================================================================

    def get_latest_observation(self, token: str) -> PriceObservation:
        latest = self._latest(token)
        if latest is None:
            raise InsufficientHistory(f"No observations for {token}")
        return latest

    def get_observations_in_range(self, token: str, start: int, end: int) -> list[PriceObservation]:
        """Observations with start <= timestamp <= end, oldest first."""
        observations = self._observations.get(token, [])
        timestamps = [o.timestamp for o in observations]
        return observations[bisect_left(timestamps, start) : bisect_right(timestamps, end)]

    def has_observation_in_range(self, token: str, min_time_elapsed: int, max_time_elapsed: int) -> bool:
        """True if some observation is between min and max seconds old."""
        now = self._ledger.now
        return bool(
            self.get_observations_in_range(token, now - max_time_elapsed, now - min_time_elapsed)
        )

    # =========================================================================
    # Averages
    # =========================================================================

    def compute_two_way_average_price(
        self, token: str, min_time_elapsed: int, max_time_elapsed: int
    ) -> TwoWayAveragePrice:
        """Average prices between the latest observation and an earlier one.

        The earlier observation is the most recent one at least
        `min_time_elapsed` older than the latest.

        Raises:
            StalePrice: If the latest observation is older than max_time_elapsed
            InsufficientHistory: If no earlier observation is old enough, or the
                closest one is more than max_time_elapsed before the latest
        """
        observations = self._observations.get(token)
        if not observations:
            raise InsufficientHistory(f"No observations for {token}")

        latest = observations[-1]
        age = self._ledger.now - latest.timestamp
        if age > max_time_elapsed:
            raise StalePrice(f"Latest price of {token} is {age}s old, limit {max_time_elapsed}s")

        timestamps = [o.timestamp for o in observations[:-1]]
        index = bisect_right(timestamps, latest.timestamp - min_time_elapsed) - 1
        if index < 0:
            raise InsufficientHistory(
                f"No observation of {token} at least {min_time_elapsed}s before the latest"
            )

        previous = observations[index]
        elapsed = latest.timestamp - previous.timestamp
        if elapsed > max_time_elapsed:
            raise InsufficientHistory(
                f"Observations of {token} are {elapsed}s apart, limit {max_time_elapsed}s"
            )

        return TwoWayAveragePrice(
            price_average=UQ112x112(
                sub_wrapped(latest.price_cumulative, previous.price_cumulative) // elapsed
            ),
            reference_price_average=UQ112x112(
                sub_wrapped(latest.reference_price_cumulative, previous.reference_price_cumulative)
                // elapsed
            ),
        )

    def compute_two_way_average_prices(
        self, tokens: list[str], min_time_elapsed: int, max_time_elapsed: int
    ) -> list[TwoWayAveragePrice]:
        return [
            self.compute_two_way_average_price(token, min_time_elapsed, max_time_elapsed)
            for token in tokens
        ]

    def compute_average_token_price(
        self, token: str, min_time_elapsed: int, max_time_elapsed: int
    ) -> UQ112x112:
        """Average reference-per-token price."""
        return self.compute_two_way_average_price(token, min_time_elapsed, max_time_elapsed).price_average

    def compute_average_token_prices(
        self, tokens: list[str], min_time_elapsed: int, max_time_elapsed: int
    ) -> list[UQ112x112]:
        return [
            self.compute_average_token_price(token, min_time_elapsed, max_time_elapsed)
            for token in tokens
        ]

    def compute_average_reference_price(
        self, token: str, min_time_elapsed: int, max_time_elapsed: int
    ) -> UQ112x112:
        """Average token-per-reference price."""
        return self.compute_two_way_average_price(
            token, min_time_elapsed, max_time_elapsed
        ).reference_price_average

    def compute_average_reference_prices(
        self, tokens: list[str], min_time_elapsed: int, max_time_elapsed: int
    ) -> list[UQ112x112]:
        return [
            self.compute_average_reference_price(token, min_time_elapsed, max_time_elapsed)
            for token in tokens
        ]

    def compute_average_value_for_tokens(
        self, token: str, amount: int, min_time_elapsed: int, max_time_elapsed: int
    ) -> int:
        """Reference-asset value of `amount` tokens at the average price."""
        price = self.compute_average_token_price(token, min_time_elapsed, max_time_elapsed)
        return price.mul(amount).decode144()

    def compute_average_tokens_for_value(
        self, token: str, value: int, min_time_elapsed: int, max_time_elapsed: int
    ) -> int:
        """Token amount worth `value` of the reference asset at the average price."""
        price = self.compute_average_reference_price(token, min_time_elapsed, max_time_elapsed)
        return price.mul(value).decode144()

    def _latest(self, token: str) -> PriceObservation | None:
        observations = self._observations.get(token)
        return observations[-1] if observations else None
