"""Tests for all-or-nothing execution and balance reconciliation."""

import pytest

from indexpool.constants import ONE_HOUR
from indexpool.errors import LimitPrice, NotController, ReentrantCall
from indexpool.ledger import Ledger
from tests.helpers import CONTROLLER, NO_PRICE_LIMIT, ONE, TRADER, TRADER_FUNDS, PoolSetup, make_token


class TestRollback:
    """Failed operations leave pool and token state untouched."""

    def test_failed_swap_restores_everything(self, ledger: Ledger, two_token_pool: PoolSetup):
        """A swap failing its price check after weights stepped is fully undone."""
        pool = two_token_pool.pool
        a, b = two_token_pool.addresses
        pool.reweigh_tokens(CONTROLLER, [a, b], [6 * ONE, 4 * ONE])
        ledger.advance(ONE_HOUR)
        before = (pool.get_token_record(a), pool.get_token_record(b))
        spot = pool.get_spot_price(a, b)

        with pytest.raises(LimitPrice):
            pool.swap_exact_amount_in(TRADER, a, ONE, b, 0, spot)

        assert (pool.get_token_record(a), pool.get_token_record(b)) == before
        assert two_token_pool.held(a, TRADER) == TRADER_FUNDS
        assert two_token_pool.held(b, TRADER) == TRADER_FUNDS

    def test_receive_hook_reentry_reverts(self, ledger: Ledger, two_token_pool: PoolSetup):
        """A recipient calling back into the pool aborts the outer swap."""
        pool = two_token_pool.pool
        a, b = two_token_pool.addresses

        def reenter(token: str, src: str, dst: str, amount: int) -> None:
            pool.swap_exact_amount_in(TRADER, b, ONE, a, 0, NO_PRICE_LIMIT)

        ledger.add_receive_hook(TRADER, reenter)
        with pytest.raises(ReentrantCall):
            pool.swap_exact_amount_in(TRADER, a, ONE, b, 0, NO_PRICE_LIMIT)
        ledger.remove_receive_hook(TRADER)

        assert pool.get_balance(a) == 100 * ONE
        assert two_token_pool.held(b, TRADER) == TRADER_FUNDS
        pool.swap_exact_amount_in(TRADER, a, ONE, b, 0, NO_PRICE_LIMIT)
        assert pool.get_balance(a) == 101 * ONE

    def test_failed_controller_call(self, two_token_pool: PoolSetup):
        pool = two_token_pool.pool
        with pytest.raises(NotController):
            pool.set_exit_fee_recipient(TRADER, TRADER)
        assert pool.get_exit_fee_recipient() == CONTROLLER


class TestGulp:
    """Tests for absorbing tokens sent directly to the pool."""

    def test_gulp_bound_token(self, two_token_pool: PoolSetup):
        """Direct transfers count once gulped."""
        pool = two_token_pool.pool
        token = two_token_pool.tokens[0]
        token.transfer(TRADER, pool.address, 7 * ONE)
        assert pool.get_balance(token.address) == 100 * ONE

        pool.gulp(token.address)
        pool.gulp(token.address)

        assert pool.get_balance(token.address) == 107 * ONE

    def test_gulp_unbound_token_forwards_to_handler(self, ledger: Ledger, two_token_pool: PoolSetup):
        """Stray tokens go to the unbind handler."""
        pool = two_token_pool.pool
        stray = make_token(ledger, "STRAY", {TRADER: 3 * ONE})
        stray.transfer(TRADER, pool.address, 3 * ONE)

        pool.gulp(stray.address)

        handler = two_token_pool.handler
        assert handler.calls == [(stray.address, 3 * ONE)]
        assert stray.balance_of(handler.address) == 3 * ONE
        assert stray.balance_of(pool.address) == 0

    def test_gulp_nothing_held(self, ledger: Ledger, two_token_pool: PoolSetup):
        """Gulping an unbound token the pool does not hold does nothing."""
        stray = make_token(ledger, "STRAY")
        two_token_pool.pool.gulp(stray.address)
        assert two_token_pool.handler.calls == []
