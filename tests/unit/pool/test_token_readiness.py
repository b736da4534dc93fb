"""Tests for binding new tokens and their path to readiness."""

import pytest
from structlog.testing import capture_logs

from indexpool.constants import DEFAULT_SWAP_FEE, MIN_BALANCE, MIN_WEIGHT, ONE_HOUR
from indexpool.errors import (
    AboveMaxTotalWeight,
    AlreadyBound,
    MaxTokens,
    MinBalance,
    RateLimited,
    TokenNotReady,
    TokenReady,
)
from indexpool.ledger import Ledger
from indexpool.pool.weighted_math import calc_out_given_in
from indexpool.token import Token
from tests.helpers import (
    CONTROLLER,
    NO_PRICE_LIMIT,
    ONE,
    PROVIDER,
    TRADER,
    TRADER_FUNDS,
    PoolSetup,
    make_pool_setup,
    make_token,
)

MINIMUM = 10 * ONE


@pytest.fixture
def new_token(ledger: Ledger) -> Token:
    return make_token(ledger, "NEW", {TRADER: TRADER_FUNDS})


@pytest.fixture
def setup(two_token_pool: PoolSetup, new_token: Token) -> PoolSetup:
    """Two ready tokens plus a bound, not-ready token with a 10 token minimum."""
    two_token_pool.pool.bind(CONTROLLER, new_token.address, 5 * ONE, MINIMUM)
    two_token_pool.tokens.append(new_token)
    return two_token_pool


def _send_to_pool(setup: PoolSetup, token: Token, amount: int) -> None:
    token.transfer(TRADER, setup.pool.address, amount)


class TestBind:
    """Tests for binding a token."""

    def test_bound_not_ready(self, setup: PoolSetup, new_token: Token):
        """A bound token starts with no weight and prices at its minimum balance."""
        pool = setup.pool
        record = pool.get_token_record(new_token.address)

        assert record.bound and not record.ready
        assert record.denorm == 0
        assert record.index == 2
        assert pool.get_used_balance(new_token.address) == MINIMUM
        assert pool.get_minimum_balance(new_token.address) == MINIMUM
        assert pool.get_total_denormalized_weight() == 10 * ONE

    def test_already_bound(self, setup: PoolSetup, new_token: Token):
        with pytest.raises(AlreadyBound):
            setup.pool.bind(CONTROLLER, new_token.address, 5 * ONE, MINIMUM)

    def test_minimum_balance_floor(self, two_token_pool: PoolSetup, new_token: Token):
        with pytest.raises(MinBalance):
            two_token_pool.pool.bind(CONTROLLER, new_token.address, 5 * ONE, MIN_BALANCE - 1)

    def test_no_room_for_another_token(self, ledger: Ledger, new_token: Token):
        """Binding reserves MIN_WEIGHT, which must fit under the total cap."""
        setup = make_pool_setup(ledger, [100 * ONE, 100 * ONE], [13_500_000_000_000_000_000, 13_400_000_000_000_000_000])
        with pytest.raises(AboveMaxTotalWeight):
            setup.pool.bind(CONTROLLER, new_token.address, ONE, MINIMUM)

    def test_max_tokens(self, ledger: Ledger, new_token: Token):
        """Pools hold at most ten tokens."""
        setup = make_pool_setup(ledger, [100 * ONE] * 10, [ONE] * 10)
        with pytest.raises(MaxTokens):
            setup.pool.bind(CONTROLLER, new_token.address, ONE, MINIMUM)


class TestNotReadyTrading:
    """Tests for trading a token before it is ready."""

    def test_cannot_be_bought_from_pool(self, setup: PoolSetup, new_token: Token):
        """A not-ready token can never be an output."""
        a = setup.addresses[0]
        with pytest.raises(TokenNotReady):
            setup.pool.swap_exact_amount_in(TRADER, a, ONE, new_token.address, 0, NO_PRICE_LIMIT)
        with pytest.raises(TokenNotReady):
            setup.pool.get_spot_price(a, new_token.address)

    def test_sold_at_minimum_balance_pricing(self, setup: PoolSetup, new_token: Token):
        """Inputs are priced as if the pool held the minimum at MIN_WEIGHT."""
        pool = setup.pool
        a = setup.addresses[0]
        expected = calc_out_given_in(MINIMUM, MIN_WEIGHT, 100 * ONE, 5 * ONE, ONE, DEFAULT_SWAP_FEE)

        amount_out, _ = pool.swap_exact_amount_in(TRADER, new_token.address, ONE, a, 0, NO_PRICE_LIMIT)

        assert amount_out == expected
        record = pool.get_token_record(new_token.address)
        assert record.balance == ONE
        assert not record.ready

    def test_ready_after_reaching_minimum(self, setup: PoolSetup, new_token: Token):
        """Reaching the minimum balance by trading makes the token ready at MIN_WEIGHT."""
        pool = setup.pool
        a = setup.addresses[0]
        with capture_logs() as logs:
            pool.swap_exact_amount_in(TRADER, new_token.address, 5 * ONE, a, 0, NO_PRICE_LIMIT)
            pool.swap_exact_amount_in(TRADER, new_token.address, 5 * ONE, a, 0, NO_PRICE_LIMIT)

        record = pool.get_token_record(new_token.address)
        assert record.ready
        assert record.denorm == MIN_WEIGHT
        assert pool.get_total_denormalized_weight() == 10 * ONE + MIN_WEIGHT
        assert [log["event"] for log in logs].count("token_ready") == 1

    def test_exit_pays_nothing_for_not_ready_tokens(self, setup: PoolSetup, new_token: Token):
        """Proportional exits skip tokens that are not ready."""
        amounts = setup.pool.exit_pool(PROVIDER, 10 * ONE, [0, 0, 0])
        assert amounts[2] == 0
        with pytest.raises(TokenNotReady):
            setup.pool.exit_pool(PROVIDER, 10 * ONE, [0, 0, 1])

    def test_join_deposits_against_minimum(self, setup: PoolSetup, new_token: Token):
        """Proportional joins take not-ready tokens in proportion to the minimum."""
        amounts = setup.pool.join_pool(TRADER, 10 * ONE, [TRADER_FUNDS] * 3)
        assert amounts == [10 * ONE, 10 * ONE, ONE]
        assert setup.pool.get_balance(new_token.address) == ONE


class TestGulpReadiness:
    """Tests for readiness reached through gulp."""

    def test_spot_price_continuous_at_minimum(self, setup: PoolSetup, new_token: Token):
        """Becoming ready at exactly the minimum leaves the spot price unchanged."""
        pool = setup.pool
        a = setup.addresses[0]
        before = pool.get_spot_price(new_token.address, a)

        _send_to_pool(setup, new_token, MINIMUM)
        pool.gulp(new_token.address)

        assert pool.get_token_record(new_token.address).ready
        assert pool.get_spot_price(new_token.address, a) == before

    def test_weight_grows_with_excess(self, setup: PoolSetup, new_token: Token):
        """50% over the minimum gives 1.5x MIN_WEIGHT."""
        _send_to_pool(setup, new_token, 15 * ONE)
        setup.pool.gulp(new_token.address)
        assert setup.pool.get_denormalized_weight(new_token.address) == 375_000_000_000_000_000

    def test_weight_capped_at_twice_min(self, setup: PoolSetup, new_token: Token):
        """Large excesses cap the initial weight at 2x MIN_WEIGHT."""
        _send_to_pool(setup, new_token, 25 * ONE)
        setup.pool.gulp(new_token.address)
        assert setup.pool.get_denormalized_weight(new_token.address) == 2 * MIN_WEIGHT

    def test_weight_clamped_to_room(self, ledger: Ledger, new_token: Token):
        """The initial weight never pushes the total above the cap."""
        setup = make_pool_setup(ledger, [100 * ONE, 100 * ONE], [13_300_000_000_000_000_000] * 2)
        setup.pool.bind(CONTROLLER, new_token.address, ONE, MINIMUM)
        _send_to_pool(setup, new_token, 25 * ONE)
        setup.pool.gulp(new_token.address)

        assert setup.pool.get_denormalized_weight(new_token.address) == 400_000_000_000_000_000
        assert setup.pool.get_total_denormalized_weight() == 27 * ONE

    def test_below_minimum_stays_not_ready(self, setup: PoolSetup, new_token: Token):
        _send_to_pool(setup, new_token, 4 * ONE)
        setup.pool.gulp(new_token.address)
        record = setup.pool.get_token_record(new_token.address)
        assert not record.ready
        assert record.balance == 4 * ONE


class TestMinimumBalance:
    """Tests for adjusting the minimum balance."""

    def test_rate_limited_after_bind(self, setup: PoolSetup, new_token: Token):
        """The minimum cannot change within six hours of binding."""
        with pytest.raises(RateLimited):
            setup.pool.set_minimum_balance(CONTROLLER, new_token.address, 5 * ONE)

    def test_update_after_delay(self, ledger: Ledger, setup: PoolSetup, new_token: Token):
        ledger.advance(6 * ONE_HOUR)
        setup.pool.set_minimum_balance(CONTROLLER, new_token.address, 5 * ONE)
        assert setup.pool.get_minimum_balance(new_token.address) == 5 * ONE

        ledger.advance(ONE_HOUR)
        with pytest.raises(RateLimited):
            setup.pool.set_minimum_balance(CONTROLLER, new_token.address, 4 * ONE)

    def test_ready_token(self, setup: PoolSetup):
        """Ready tokens have no minimum balance."""
        a = setup.addresses[0]
        with pytest.raises(TokenReady):
            setup.pool.set_minimum_balance(CONTROLLER, a, ONE)
        with pytest.raises(TokenReady):
            setup.pool.get_minimum_balance(a)


class TestReindex:
    """Tests for replacing the target token set."""

    def test_reindex_binds_and_drops(self, ledger: Ledger, three_token_pool: PoolSetup, new_token: Token):
        """Listed new tokens are bound; missing ready tokens get a zero target."""
        pool = three_token_pool.pool
        a, b, c = three_token_pool.addresses
        pool.reindex_tokens(
            CONTROLLER,
            [a, b, new_token.address],
            [2 * ONE, ONE // 10, ONE],
            [0, 0, MINIMUM],
        )

        assert pool.get_token_record(c).desired_denorm == 0
        assert pool.is_bound(c)
        assert pool.get_token_record(b).desired_denorm == MIN_WEIGHT
        record = pool.get_token_record(new_token.address)
        assert record.bound and not record.ready
        assert record.minimum_balance == MINIMUM
        assert pool.get_current_desired_tokens() == [a, b, new_token.address]

    def test_reindex_unbinds_not_ready_tokens(self, setup: PoolSetup, new_token: Token):
        """A not-ready token missing from the new set is removed at once."""
        pool = setup.pool
        a, b, _ = setup.addresses
        _send_to_pool(setup, new_token, ONE)

        pool.reindex_tokens(CONTROLLER, [a, b], [5 * ONE, 5 * ONE], [0, 0])

        assert not pool.is_bound(new_token.address)
        assert setup.handler.calls == [(new_token.address, ONE)]
        assert pool.get_current_tokens() == [a, b]
