"""Self-rebalancing weighted index pool.

The pool is a multi-token weighted AMM whose controller sets a desired
weight for every token. Live weights move towards the desired weights one
small step per token per WEIGHT_UPDATE_DELAY, and only as a side effect of
trades: a token flowing in may gain weight, a token flowing out may lose it.
Each step shifts prices slightly, which gives arbitrageurs a reason to trade
the pool towards its target composition.

Tokens enter in a "not ready" state with a minimum balance. Until the pool
holds that much they can be bought by the pool (priced as if the pool held
the minimum balance at MIN_WEIGHT) but never sold by it. Tokens with a
desired weight of zero are removed once their weight decays to MIN_WEIGHT
and their remaining balance goes to the unbind handler.

Every mutating entry point takes the reentrancy lock and runs inside
`Ledger.atomic()`, so any error leaves the pool and all token balances as
they were.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

import structlog

from indexpool.config import PoolSettings
from indexpool.constants import (
    BONE,
    EXIT_FEE,
    INIT_POOL_SUPPLY,
    MAX_BOUND_TOKENS,
    MAX_FEE,
    MAX_IN_RATIO,
    MAX_OUT_RATIO,
    MAX_TOTAL_WEIGHT,
    MAX_WEIGHT,
    MIN_BALANCE,
    MIN_BOUND_TOKENS,
    MIN_FEE,
    MIN_WEIGHT,
)
from indexpool.errors import (
    AboveMaxTotalWeight,
    AboveMaxWeight,
    AlreadyBound,
    ArrayLengthMismatch,
    BadLimitPrice,
    BelowMinWeight,
    DuplicateInitialization,
    InsufficientBalance,
    InsufficientPayment,
    InvalidFee,
    LimitIn,
    LimitOut,
    LimitPrice,
    MathApprox,
    MaxInRatio,
    MaxOutRatio,
    MaxTokens,
    MinBalance,
    MinTokens,
    NotBound,
    NotController,
    NotInitialized,
    NullAddress,
    RateLimited,
    SameToken,
    TokenNotReady,
    TokenReady,
    ZeroIn,
)
from indexpool.ledger import Stateful
from indexpool.math.bnum import badd, bdiv, bmul, bsub
from indexpool.pool.guard import ReentrancyGuard
from indexpool.pool.records import FlashLoanRecipient, TokenRecord, UnbindHandler
from indexpool.pool.weighted_math import (
    calc_in_given_out,
    calc_out_given_in,
    calc_pool_in_given_single_out,
    calc_pool_out_given_single_in,
    calc_single_in_given_pool_out,
    calc_single_out_given_pool_in,
    calc_spot_price,
)
from indexpool.token import Token

if TYPE_CHECKING:
    from indexpool.ledger import Ledger

logger = structlog.get_logger()


class IndexPool(Stateful):
    """Weighted pool with controller-driven weight migration.

    Args:
        ledger: Ledger supplying the clock, tokens and atomic execution
        controller: Address allowed to configure the pool
        name: Pool share token name
        symbol: Pool share token symbol
        settings: Swap fee and rate limits
    """

    _state_fields = (
        "_records",
        "_tokens",
        "_swap_fee",
        "_total_weight",
        "_public_swap",
        "_controller",
        "_exit_fee_recipient",
        "_minimum_balance_updates",
    )
    _ref_fields = ("_unbind_handler",)

    def __init__(
        self,
        ledger: Ledger,
        controller: str,
        name: str = "",
        symbol: str = "",
        settings: PoolSettings | None = None,
    ) -> None:
        if not controller:
            raise NullAddress("Pool controller cannot be empty")
        self._ledger = ledger
        self.settings = settings or PoolSettings()
        self._share = Token(ledger, name=name, symbol=symbol)
        self.address = self._share.address
        self._guard = ReentrancyGuard()

        self._records: dict[str, TokenRecord] = {}
        self._tokens: list[str] = []
        self._swap_fee = self.settings.swap_fee
        self._total_weight = 0
        self._public_swap = False
        self._controller = controller
        self._exit_fee_recipient = controller
        self._minimum_balance_updates: dict[str, int] = {}
        self._unbind_handler: UnbindHandler | None = None
        ledger.register(self)

    def __repr__(self) -> str:
        return f"IndexPool({self._share.symbol or self.address})"

    @property
    def share_token(self) -> Token:
        """Token representing ownership of the pool."""
        return self._share

    # =========================================================================
    # Controller actions
    # =========================================================================

    def initialize(
        self,
        caller: str,
        tokens: list[str],
        balances: list[int],
        denorms: list[int],
        token_provider: str,
        unbind_handler: UnbindHandler,
    ) -> None:
        """Bind the initial tokens and mint the initial pool supply.

        Balances are pulled from `token_provider`, which receives
        INIT_POOL_SUPPLY pool shares. Public swapping is enabled afterwards.

        Raises:
            DuplicateInitialization: If the pool is already initialized
            ArrayLengthMismatch: If the lists differ in length
            MinTokens, MaxTokens: If the token count is out of bounds
            BelowMinWeight, AboveMaxWeight: If a weight is out of bounds
            MinBalance: If a balance is below MIN_BALANCE
            AboveMaxTotalWeight: If the weights sum above MAX_TOTAL_WEIGHT
        """
        with self._guard.lock("initialize"), self._ledger.atomic():
            self._require_controller(caller)
            if self._public_swap:
                raise DuplicateInitialization(f"{self!r} is already initialized")
            if not token_provider:
                raise NullAddress("Token provider cannot be empty")
            if not (len(tokens) == len(balances) == len(denorms)):
                raise ArrayLengthMismatch("tokens, balances and denorms differ in length")
            if len(tokens) < MIN_BOUND_TOKENS:
                raise MinTokens(f"Need at least {MIN_BOUND_TOKENS} tokens, got {len(tokens)}")
            if len(tokens) > MAX_BOUND_TOKENS:
                raise MaxTokens(f"At most {MAX_BOUND_TOKENS} tokens, got {len(tokens)}")

            now = self._ledger.now
            total_weight = 0
            for token, balance, denorm in zip(tokens, balances, denorms):
                if token in self._records:
                    raise AlreadyBound(f"Token {token} listed twice")
                _check_weight(token, denorm)
                if balance < MIN_BALANCE:
                    raise MinBalance(f"Balance {balance} of {token} is below MIN_BALANCE")
                total_weight = badd(total_weight, denorm)
                self._records[token] = TokenRecord(
                    bound=True,
                    ready=True,
                    last_denorm_update=now,
                    denorm=denorm,
                    desired_denorm=denorm,
                    index=len(self._tokens),
                    balance=balance,
                )
                self._tokens.append(token)
                self._pull_underlying(token, token_provider, balance)

            if total_weight > MAX_TOTAL_WEIGHT:
                raise AboveMaxTotalWeight(f"Total weight {total_weight} exceeds MAX_TOTAL_WEIGHT")

            self._total_weight = total_weight
            self._unbind_handler = unbind_handler
            self._share.mint(token_provider, INIT_POOL_SUPPLY)
            self._public_swap = True
            logger.info(
                "pool_initialized",
                pool=self.address,
                tokens=tokens,
                total_weight=total_weight,
            )

    def bind(self, caller: str, token: str, desired_denorm: int, minimum_balance: int) -> None:
        """Add a token in the not-ready state.

        Raises:
            AlreadyBound: If the token is already bound
            MaxTokens: If the pool already holds MAX_BOUND_TOKENS tokens
            AboveMaxTotalWeight: If the pool has no room for another MIN_WEIGHT
        """
        with self._guard.lock("bind"), self._ledger.atomic():
            self._require_controller(caller)
            self._require_initialized()
            if token in self._records:
                raise AlreadyBound(f"Token {token} is already bound")
            if len(self._tokens) >= MAX_BOUND_TOKENS:
                raise MaxTokens(f"{self!r} already holds {MAX_BOUND_TOKENS} tokens")
            _check_weight(token, desired_denorm)
            self._bind(token, desired_denorm, minimum_balance)

    def reweigh_tokens(self, caller: str, tokens: list[str], desired_denorms: list[int]) -> None:
        """Set new desired weights for bound tokens.

        A desired weight of zero schedules the token for removal.
        """
        with self._guard.lock("reweigh_tokens"), self._ledger.atomic():
            self._require_controller(caller)
            self._require_initialized()
            if len(tokens) != len(desired_denorms):
                raise ArrayLengthMismatch("tokens and desired_denorms differ in length")
            for token, desired in zip(tokens, desired_denorms):
                record = self._get_record(token)
                if desired != 0:
                    _check_weight(token, desired)
                record.desired_denorm = desired
            logger.info("pool_reweighed", pool=self.address, tokens=tokens, desired=desired_denorms)

    def reindex_tokens(
        self,
        caller: str,
        tokens: list[str],
        desired_denorms: list[int],
        minimum_balances: list[int],
    ) -> None:
        """Replace the target token set.

        Bound tokens missing from `tokens` get a desired weight of zero; a
        missing token that is not ready yet is unbound at once. Listed
        tokens that are not bound are bound in the not-ready state with the
        given minimum balance. Desired weights below MIN_WEIGHT are raised
        to MIN_WEIGHT.
        """
        with self._guard.lock("reindex_tokens"), self._ledger.atomic():
            self._require_controller(caller)
            self._require_initialized()
            if not (len(tokens) == len(desired_denorms) == len(minimum_balances)):
                raise ArrayLengthMismatch("tokens, desired_denorms and minimum_balances differ in length")
            if len(tokens) < MIN_BOUND_TOKENS:
                raise MinTokens(f"Need at least {MIN_BOUND_TOKENS} tokens, got {len(tokens)}")
            if len(tokens) > MAX_BOUND_TOKENS:
                raise MaxTokens(f"At most {MAX_BOUND_TOKENS} tokens, got {len(tokens)}")

            listed = set(tokens)
            for token in list(self._tokens):
                if token in listed:
                    continue
                record = self._records[token]
                record.desired_denorm = 0
                if not record.ready:
                    self._unbind(token)

            for token, desired, minimum_balance in zip(tokens, desired_denorms, minimum_balances):
                if desired > MAX_WEIGHT:
                    raise AboveMaxWeight(f"Desired weight {desired} of {token} exceeds MAX_WEIGHT")
                desired = max(desired, MIN_WEIGHT)
                record = self._records.get(token)
                if record is not None:
                    record.desired_denorm = desired
                else:
                    self._bind(token, desired, minimum_balance)
            logger.info("pool_reindexed", pool=self.address, tokens=tokens, desired=desired_denorms)

    def set_minimum_balance(self, caller: str, token: str, minimum_balance: int) -> None:
        """Change the minimum balance of a token that is not ready.

        Raises:
            TokenReady: If the token is already ready
            RateLimited: If the minimum was changed within the update delay
            MinBalance: If minimum_balance is below MIN_BALANCE
        """
        with self._guard.lock("set_minimum_balance"), self._ledger.atomic():
            self._require_controller(caller)
            record = self._get_record(token)
            if record.ready:
                raise TokenReady(f"Token {token} is already ready")
            now = self._ledger.now
            last_update = self._minimum_balance_updates.get(token, 0)
            if now - last_update < self.settings.min_balance_update_delay:
                raise RateLimited(f"Minimum balance of {token} changed {now - last_update}s ago")
            if minimum_balance < MIN_BALANCE:
                raise MinBalance(f"Minimum balance {minimum_balance} is below MIN_BALANCE")
            record.minimum_balance = minimum_balance
            self._minimum_balance_updates[token] = now
            logger.info("minimum_balance_set", pool=self.address, token=token, minimum_balance=minimum_balance)

    def set_swap_fee(self, caller: str, swap_fee: int) -> None:
        with self._guard.lock("set_swap_fee"), self._ledger.atomic():
            self._require_controller(caller)
            if swap_fee < MIN_FEE or swap_fee > MAX_FEE:
                raise InvalidFee(f"Swap fee {swap_fee} outside [{MIN_FEE}, {MAX_FEE}]")
            self._swap_fee = swap_fee
            logger.info("swap_fee_set", pool=self.address, swap_fee=swap_fee)

    def set_controller(self, caller: str, controller: str) -> None:
        with self._guard.lock("set_controller"), self._ledger.atomic():
            self._require_controller(caller)
            if not controller:
                raise NullAddress("Controller cannot be empty")
            self._controller = controller

    def set_exit_fee_recipient(self, caller: str, recipient: str) -> None:
        with self._guard.lock("set_exit_fee_recipient"), self._ledger.atomic():
            self._require_controller(caller)
            if not recipient:
                raise NullAddress("Exit fee recipient cannot be empty")
            self._exit_fee_recipient = recipient

    # =========================================================================
    # Liquidity provision
    # =========================================================================

    def join_pool(self, caller: str, pool_amount_out: int, max_amounts_in: list[int]) -> list[int]:
        """Mint pool shares for a proportional deposit of every token.

        Not-ready tokens are deposited in proportion to their minimum balance.

        Returns:
            Amount of each token pulled from the caller, in token order
        """
        with self._guard.lock("join_pool"), self._ledger.atomic():
            self._require_initialized()
            if len(max_amounts_in) != len(self._tokens):
                raise ArrayLengthMismatch("max_amounts_in must have one entry per token")

            ratio = bdiv(pool_amount_out, self._share.total_supply)
            if ratio == 0:
                raise MathApprox("Pool amount out rounds to a zero share")

            amounts_in = []
            for token, max_amount_in in zip(list(self._tokens), max_amounts_in):
                record = self._records[token]
                used_balance, _ = _pricing_terms(record)
                amount_in = bmul(ratio, used_balance)
                if amount_in == 0:
                    raise MathApprox(f"Deposit of {token} rounds to zero")
                if amount_in > max_amount_in:
                    raise LimitIn(f"Deposit of {token} is {amount_in}, limit {max_amount_in}")
                if amount_in > bmul(used_balance, MAX_IN_RATIO):
                    raise MaxInRatio(f"Deposit of {token} exceeds MAX_IN_RATIO")
                self._pull_underlying(token, caller, amount_in)
                self._update_input_token(token, record, badd(record.balance, amount_in))
                amounts_in.append(amount_in)

            self._share.mint(caller, pool_amount_out)
            logger.debug("pool_joined", pool=self.address, pool_amount_out=pool_amount_out)
            return amounts_in

    def exit_pool(self, caller: str, pool_amount_in: int, min_amounts_out: list[int]) -> list[int]:
        """Redeem pool shares for a proportional share of every ready token.

        EXIT_FEE of the shares goes to the exit fee recipient. Not-ready
        tokens pay out nothing.

        Returns:
            Amount of each token sent to the caller, in token order
        """
        with self._guard.lock("exit_pool"), self._ledger.atomic():
            self._require_initialized()
            if len(min_amounts_out) != len(self._tokens):
                raise ArrayLengthMismatch("min_amounts_out must have one entry per token")

            pool_total = self._share.total_supply
            exit_fee = bmul(pool_amount_in, EXIT_FEE)
            ratio = bdiv(bsub(pool_amount_in, exit_fee), pool_total)
            if ratio == 0:
                raise MathApprox("Pool amount in rounds to a zero share")
            self._take_pool_shares(caller, pool_amount_in)

            amounts_out = []
            for token, min_amount_out in zip(list(self._tokens), min_amounts_out):
                record = self._records[token]
                if not record.ready:
                    if min_amount_out != 0:
                        raise TokenNotReady(f"Token {token} is not ready")
                    amounts_out.append(0)
                    continue
                amount_out = bmul(ratio, record.balance)
                if amount_out == 0:
                    raise MathApprox(f"Withdrawal of {token} rounds to zero")
                if amount_out < min_amount_out:
                    raise LimitOut(f"Withdrawal of {token} is {amount_out}, minimum {min_amount_out}")
                if amount_out > bmul(record.balance, MAX_OUT_RATIO):
                    raise MaxOutRatio(f"Withdrawal of {token} exceeds MAX_OUT_RATIO")
                record.balance = bsub(record.balance, amount_out)
                self._push_underlying(token, caller, amount_out)
                amounts_out.append(amount_out)

            logger.debug("pool_exited", pool=self.address, pool_amount_in=pool_amount_in)
            return amounts_out

    def joinswap_extern_amount_in(
        self, caller: str, token_in: str, token_amount_in: int, min_pool_amount_out: int
    ) -> int:
        """Deposit an exact amount of one token for pool shares."""
        with self._guard.lock("joinswap_extern_amount_in"), self._ledger.atomic():
            self._require_initialized()
            if token_amount_in == 0:
                raise ZeroIn("Deposit amount is zero")
            record = self._get_record(token_in)
            balance_in, weight_in = _pricing_terms(record)
            if token_amount_in > bmul(balance_in, MAX_IN_RATIO):
                raise MaxInRatio(f"Deposit of {token_in} exceeds MAX_IN_RATIO")

            pool_amount_out = calc_pool_out_given_single_in(
                balance_in,
                weight_in,
                self._share.total_supply,
                self._total_weight,
                token_amount_in,
                self._swap_fee,
            )
            if pool_amount_out < min_pool_amount_out:
                raise LimitOut(f"Pool amount out {pool_amount_out} below {min_pool_amount_out}")

            self._single_asset_join(caller, token_in, record, token_amount_in, pool_amount_out)
            return pool_amount_out

    def joinswap_pool_amount_out(
        self, caller: str, token_in: str, pool_amount_out: int, max_amount_in: int
    ) -> int:
        """Deposit one token for an exact number of pool shares."""
        with self._guard.lock("joinswap_pool_amount_out"), self._ledger.atomic():
            self._require_initialized()
            record = self._get_record(token_in)
            balance_in, weight_in = _pricing_terms(record)

            token_amount_in = calc_single_in_given_pool_out(
                balance_in,
                weight_in,
                self._share.total_supply,
                self._total_weight,
                pool_amount_out,
                self._swap_fee,
            )
            if token_amount_in == 0:
                raise MathApprox("Deposit rounds to zero")
            if token_amount_in > max_amount_in:
                raise LimitIn(f"Deposit of {token_in} is {token_amount_in}, limit {max_amount_in}")
            if token_amount_in > bmul(balance_in, MAX_IN_RATIO):
                raise MaxInRatio(f"Deposit of {token_in} exceeds MAX_IN_RATIO")

            self._single_asset_join(caller, token_in, record, token_amount_in, pool_amount_out)
            return token_amount_in

    def exitswap_pool_amount_in(
        self, caller: str, token_out: str, pool_amount_in: int, min_amount_out: int
    ) -> int:
        """Redeem an exact number of pool shares for one token."""
        with self._guard.lock("exitswap_pool_amount_in"), self._ledger.atomic():
            self._require_initialized()
            record = self._get_output_record(token_out)

            token_amount_out = calc_single_out_given_pool_in(
                record.balance,
                record.denorm,
                self._share.total_supply,
                self._total_weight,
                pool_amount_in,
                self._swap_fee,
            )
            if token_amount_out < min_amount_out:
                raise LimitOut(f"Withdrawal of {token_out} is {token_amount_out}, minimum {min_amount_out}")
            if token_amount_out > bmul(record.balance, MAX_OUT_RATIO):
                raise MaxOutRatio(f"Withdrawal of {token_out} exceeds MAX_OUT_RATIO")

            self._single_asset_exit(caller, token_out, record, token_amount_out, pool_amount_in)
            return token_amount_out

    def exitswap_extern_amount_out(
        self, caller: str, token_out: str, token_amount_out: int, max_pool_amount_in: int
    ) -> int:
        """Redeem pool shares for an exact amount of one token."""
        with self._guard.lock("exitswap_extern_amount_out"), self._ledger.atomic():
            self._require_initialized()
            record = self._get_output_record(token_out)
            if token_amount_out > bmul(record.balance, MAX_OUT_RATIO):
                raise MaxOutRatio(f"Withdrawal of {token_out} exceeds MAX_OUT_RATIO")

            pool_amount_in = calc_pool_in_given_single_out(
                record.balance,
                record.denorm,
                self._share.total_supply,
                self._total_weight,
                token_amount_out,
                self._swap_fee,
            )
            if pool_amount_in == 0:
                raise MathApprox("Pool amount in rounds to zero")
            if pool_amount_in > max_pool_amount_in:
                raise LimitIn(f"Pool amount in {pool_amount_in} above {max_pool_amount_in}")

            self._single_asset_exit(caller, token_out, record, token_amount_out, pool_amount_in)
            return pool_amount_in

    # =========================================================================
    # Swaps
    # =========================================================================

    def swap_exact_amount_in(
        self,
        caller: str,
        token_in: str,
        token_amount_in: int,
        token_out: str,
        min_amount_out: int,
        max_price: int,
    ) -> tuple[int, int]:
        """Sell an exact amount of token_in for token_out.

        Returns:
            Tuple of (token_amount_out, spot_price_after)
        """
        with self._guard.lock("swap_exact_amount_in"), self._ledger.atomic():
            self._require_initialized()
            if token_in == token_out:
                raise SameToken(f"Cannot swap {token_in} for itself")
            in_record = self._get_record(token_in)
            out_record = self._get_output_record(token_out)
            balance_in, weight_in = _pricing_terms(in_record)
            balance_out, weight_out = out_record.balance, out_record.denorm

            if token_amount_in > bmul(balance_in, MAX_IN_RATIO):
                raise MaxInRatio(f"Input of {token_in} exceeds MAX_IN_RATIO")

            spot_price_before = calc_spot_price(
                balance_in, weight_in, balance_out, weight_out, self._swap_fee
            )
            if spot_price_before > max_price:
                raise BadLimitPrice(f"Spot price {spot_price_before} above limit {max_price}")

            token_amount_out = calc_out_given_in(
                balance_in, weight_in, balance_out, weight_out, token_amount_in, self._swap_fee
            )
            if token_amount_out < min_amount_out:
                raise LimitOut(f"Output {token_amount_out} below minimum {min_amount_out}")
            if token_amount_out > bmul(balance_out, MAX_OUT_RATIO):
                raise MaxOutRatio(f"Output of {token_out} exceeds MAX_OUT_RATIO")

            self._settle_swap(
                caller,
                token_in,
                in_record,
                token_amount_in,
                token_out,
                out_record,
                token_amount_out,
            )
            spot_price_after = calc_spot_price(
                badd(balance_in, token_amount_in),
                weight_in,
                bsub(balance_out, token_amount_out),
                weight_out,
                self._swap_fee,
            )
            _check_prices_after(
                spot_price_before, spot_price_after, max_price, token_amount_in, token_amount_out
            )
            return token_amount_out, spot_price_after

    def swap_exact_amount_out(
        self,
        caller: str,
        token_in: str,
        max_amount_in: int,
        token_out: str,
        token_amount_out: int,
        max_price: int,
    ) -> tuple[int, int]:
        """Buy an exact amount of token_out with token_in.

        Returns:
            Tuple of (token_amount_in, spot_price_after)
        """
        with self._guard.lock("swap_exact_amount_out"), self._ledger.atomic():
            self._require_initialized()
            if token_in == token_out:
                raise SameToken(f"Cannot swap {token_in} for itself")
            in_record = self._get_record(token_in)
            out_record = self._get_output_record(token_out)
            balance_in, weight_in = _pricing_terms(in_record)
            balance_out, weight_out = out_record.balance, out_record.denorm

            if token_amount_out > bmul(balance_out, MAX_OUT_RATIO):
                raise MaxOutRatio(f"Output of {token_out} exceeds MAX_OUT_RATIO")

            spot_price_before = calc_spot_price(
                balance_in, weight_in, balance_out, weight_out, self._swap_fee
            )
            if spot_price_before > max_price:
                raise BadLimitPrice(f"Spot price {spot_price_before} above limit {max_price}")

            token_amount_in = calc_in_given_out(
                balance_in, weight_in, balance_out, weight_out, token_amount_out, self._swap_fee
            )
            if token_amount_in > max_amount_in:
                raise LimitIn(f"Input {token_amount_in} above maximum {max_amount_in}")
            if token_amount_in > bmul(balance_in, MAX_IN_RATIO):
                raise MaxInRatio(f"Input of {token_in} exceeds MAX_IN_RATIO")

            self._settle_swap(
                caller,
                token_in,
                in_record,
                token_amount_in,
                token_out,
                out_record,
                token_amount_out,
            )
            spot_price_after = calc_spot_price(
                badd(balance_in, token_amount_in),
                weight_in,
                bsub(balance_out, token_amount_out),
                weight_out,
                self._swap_fee,
            )
            _check_prices_after(
                spot_price_before, spot_price_after, max_price, token_amount_in, token_amount_out
            )
            return token_amount_in, spot_price_after

    # =========================================================================
    # Balance maintenance
    # =========================================================================

    def gulp(self, token: str) -> None:
        """Absorb tokens sent to the pool outside of pool operations.

        For a bound token the accounted balance is set to the amount held,
        which may make a not-ready token ready. Anything held of an unbound
        token is forwarded to the unbind handler.
        """
        with self._guard.lock("gulp"), self._ledger.atomic():
            held = self._ledger.get_token(token).balance_of(self.address)
            record = self._records.get(token)
            if record is not None:
                if record.ready:
                    record.balance = held
                else:
                    self._update_input_token(token, record, held)
                logger.debug("pool_gulped", pool=self.address, token=token, balance=held)
                return

            if held == 0:
                logger.debug("pool_gulp_noop", pool=self.address, token=token)
                return
            handler = self._require_unbind_handler()
            self._push_underlying(token, handler.address, held)
            handler.handle_unbind_token(token, held)
            logger.info("unbound_token_forwarded", pool=self.address, token=token, amount=held)

    def flash_borrow(
        self,
        caller: str,
        recipient: FlashLoanRecipient,
        token: str,
        amount: int,
        data: bytes = b"",
    ) -> None:
        """Lend `amount` of a bound token for the duration of a callback.

        The recipient must return the amount plus a fee of `amount * swap_fee`
        before `receive_flash_loan` returns.

        Raises:
            InsufficientBalance: If amount exceeds the pool's balance
            InsufficientPayment: If the loan and fee were not repaid
        """
        with self._guard.lock("flash_borrow"), self._ledger.atomic():
            record = self._get_record(token)
            if amount > record.balance:
                raise InsufficientBalance(f"Cannot lend {amount} of {token}, pool holds {record.balance}")

            fee = bmul(amount, self._swap_fee)
            amount_due = badd(amount, fee)
            self._push_underlying(token, recipient.address, amount)
            recipient.receive_flash_loan(token, amount, amount_due, data)

            held = self._ledger.get_token(token).balance_of(self.address)
            if held < badd(record.balance, fee):
                raise InsufficientPayment(f"Flash loan of {token} not repaid: holds {held}")
            if record.ready:
                record.balance = held
            else:
                self._update_input_token(token, record, held)
            logger.info("flash_loan", pool=self.address, token=token, amount=amount, fee=fee, caller=caller)

    # =========================================================================
    # Views
    # =========================================================================

    def is_public_swap(self) -> bool:
        self._guard.check_view("is_public_swap")
        return self._public_swap

    def get_swap_fee(self) -> int:
        self._guard.check_view("get_swap_fee")
        return self._swap_fee

    def get_controller(self) -> str:
        self._guard.check_view("get_controller")
        return self._controller

    def get_exit_fee_recipient(self) -> str:
        self._guard.check_view("get_exit_fee_recipient")
        return self._exit_fee_recipient

    def is_bound(self, token: str) -> bool:
        self._guard.check_view("is_bound")
        return token in self._records

    def get_num_tokens(self) -> int:
        self._guard.check_view("get_num_tokens")
        return len(self._tokens)

    def get_current_tokens(self) -> list[str]:
        self._guard.check_view("get_current_tokens")
        return list(self._tokens)

    def get_current_desired_tokens(self) -> list[str]:
        """Bound tokens with a non-zero desired weight."""
        self._guard.check_view("get_current_desired_tokens")
        return [t for t in self._tokens if self._records[t].desired_denorm > 0]

    def get_denormalized_weight(self, token: str) -> int:
        self._guard.check_view("get_denormalized_weight")
        return self._get_record(token).denorm

    def get_total_denormalized_weight(self) -> int:
        self._guard.check_view("get_total_denormalized_weight")
        return self._total_weight

    def get_token_record(self, token: str) -> TokenRecord:
        """Copy of the token's record."""
        self._guard.check_view("get_token_record")
        return dataclasses.replace(self._get_record(token))

    def get_balance(self, token: str) -> int:
        self._guard.check_view("get_balance")
        return self._get_record(token).balance

    def get_minimum_balance(self, token: str) -> int:
        self._guard.check_view("get_minimum_balance")
        record = self._get_record(token)
        if record.ready:
            raise TokenReady(f"Token {token} is already ready")
        return record.minimum_balance

    def get_used_balance(self, token: str) -> int:
        """Balance used for pricing: the minimum balance while not ready."""
        self._guard.check_view("get_used_balance")
        return _pricing_terms(self._get_record(token))[0]

    def get_spot_price(self, token_in: str, token_out: str) -> int:
        """Price of token_out in token_in, including the swap fee."""
        self._guard.check_view("get_spot_price")
        balance_in, weight_in = _pricing_terms(self._get_record(token_in))
        out_record = self._get_output_record(token_out)
        return calc_spot_price(
            balance_in, weight_in, out_record.balance, out_record.denorm, self._swap_fee
        )

    def total_supply(self) -> int:
        self._guard.check_view("total_supply")
        return self._share.total_supply

    def balance_of(self, account: str) -> int:
        self._guard.check_view("balance_of")
        return self._share.balance_of(account)

    # =========================================================================
    # Internal: checks and transfers
    # =========================================================================

    def _require_controller(self, caller: str) -> None:
        if caller != self._controller:
            raise NotController(f"{caller} is not the controller of {self!r}")

    def _require_initialized(self) -> None:
        if not self._public_swap:
            raise NotInitialized(f"{self!r} is not initialized")

    def _require_unbind_handler(self) -> UnbindHandler:
        if self._unbind_handler is None:
            raise NotInitialized(f"{self!r} has no unbind handler")
        return self._unbind_handler

    def _get_record(self, token: str) -> TokenRecord:
        record = self._records.get(token)
        if record is None:
            raise NotBound(f"Token {token} is not bound to {self!r}")
        return record

    def _get_output_record(self, token: str) -> TokenRecord:
        record = self._get_record(token)
        if not record.ready:
            raise TokenNotReady(f"Token {token} is not ready")
        return record

    def _pull_underlying(self, token: str, src: str, amount: int) -> None:
        self._ledger.get_token(token).transfer(src, self.address, amount)

    def _push_underlying(self, token: str, dst: str, amount: int) -> None:
        self._ledger.get_token(token).transfer(self.address, dst, amount)

    def _take_pool_shares(self, caller: str, pool_amount_in: int) -> None:
        """Pull shares from caller, pay the exit fee and burn the rest."""
        exit_fee = bmul(pool_amount_in, EXIT_FEE)
        self._share.transfer(caller, self.address, pool_amount_in)
        self._share.transfer(self.address, self._exit_fee_recipient, exit_fee)
        self._share.burn(self.address, bsub(pool_amount_in, exit_fee))

    def _single_asset_join(
        self, caller: str, token: str, record: TokenRecord, amount_in: int, pool_amount_out: int
    ) -> None:
        was_ready = record.ready
        self._pull_underlying(token, caller, amount_in)
        self._update_input_token(token, record, badd(record.balance, amount_in))
        if was_ready:
            self._increase_denorm(token, record)
        self._share.mint(caller, pool_amount_out)
        logger.debug(
            "pool_single_join",
            pool=self.address,
            token=token,
            amount_in=amount_in,
            pool_amount_out=pool_amount_out,
        )

    def _single_asset_exit(
        self, caller: str, token: str, record: TokenRecord, amount_out: int, pool_amount_in: int
    ) -> None:
        self._take_pool_shares(caller, pool_amount_in)
        self._push_underlying(token, caller, amount_out)
        self._update_output_token(token, record, bsub(record.balance, amount_out))
        logger.debug(
            "pool_single_exit",
            pool=self.address,
            token=token,
            amount_out=amount_out,
            pool_amount_in=pool_amount_in,
        )

    def _settle_swap(
        self,
        caller: str,
        token_in: str,
        in_record: TokenRecord,
        amount_in: int,
        token_out: str,
        out_record: TokenRecord,
        amount_out: int,
    ) -> None:
        """Move the tokens, then update the output side before the input side."""
        was_ready = in_record.ready
        real_balance_in = badd(in_record.balance, amount_in)
        self._pull_underlying(token_in, caller, amount_in)
        self._push_underlying(token_out, caller, amount_out)

        self._update_output_token(token_out, out_record, bsub(out_record.balance, amount_out))
        self._update_input_token(token_in, in_record, real_balance_in)
        if was_ready and in_record.bound:
            self._increase_denorm(token_in, in_record)
        logger.debug(
            "pool_swap",
            pool=self.address,
            token_in=token_in,
            amount_in=amount_in,
            token_out=token_out,
            amount_out=amount_out,
        )

    # =========================================================================
    # Internal: weights and lifecycle
    # =========================================================================

    def _committed_weight(self) -> int:
        """Total weight plus MIN_WEIGHT reserved for each not-ready token."""
        not_ready = sum(1 for t in self._tokens if not self._records[t].ready)
        return self._total_weight + not_ready * MIN_WEIGHT

    def _bind(self, token: str, desired_denorm: int, minimum_balance: int) -> None:
        if minimum_balance < MIN_BALANCE:
            raise MinBalance(f"Minimum balance {minimum_balance} of {token} is below MIN_BALANCE")
        if self._committed_weight() + MIN_WEIGHT > MAX_TOTAL_WEIGHT:
            raise AboveMaxTotalWeight(f"No room for another token in {self!r}")

        self._records[token] = TokenRecord(
            bound=True,
            ready=False,
            desired_denorm=desired_denorm,
            index=len(self._tokens),
            minimum_balance=minimum_balance,
        )
        self._tokens.append(token)
        self._minimum_balance_updates[token] = self._ledger.now
        logger.info(
            "token_bound",
            pool=self.address,
            token=token,
            desired_denorm=desired_denorm,
            minimum_balance=minimum_balance,
        )

    def _unbind(self, token: str) -> None:
        """Remove a token and hand its whole held balance to the unbind handler."""
        record = self._records.pop(token)
        last = self._tokens.pop()
        if last != token:
            self._tokens[record.index] = last
            self._records[last].index = record.index
        self._total_weight = bsub(self._total_weight, record.denorm)
        self._minimum_balance_updates.pop(token, None)

        handler = self._require_unbind_handler()
        held = self._ledger.get_token(token).balance_of(self.address)
        if held > 0:
            self._push_underlying(token, handler.address, held)
        handler.handle_unbind_token(token, held)

        # Callers may still hold the record; leave it in the unbound state
        record.bound = False
        record.ready = False
        record.denorm = 0
        record.desired_denorm = 0
        record.balance = 0
        logger.info("token_unbound", pool=self.address, token=token, amount=held)

    def _update_input_token(self, token: str, record: TokenRecord, real_balance: int) -> None:
        """Record a higher balance, making a not-ready token ready if it qualifies."""
        if record.ready or real_balance < record.minimum_balance:
            record.balance = real_balance
            return

        # Weight grows with the excess over the minimum balance, up to 2x the floor
        excess = bdiv(bsub(real_balance, record.minimum_balance), record.minimum_balance)
        denorm = min(bmul(MIN_WEIGHT, badd(BONE, excess)), 2 * MIN_WEIGHT)
        room = MAX_TOTAL_WEIGHT - (self._committed_weight() - MIN_WEIGHT)
        denorm = max(min(denorm, room), MIN_WEIGHT)

        record.ready = True
        record.denorm = denorm
        record.balance = real_balance
        record.last_denorm_update = self._ledger.now
        self._total_weight = badd(self._total_weight, denorm)
        logger.info(
            "token_ready",
            pool=self.address,
            token=token,
            denorm=denorm,
            balance=real_balance,
        )

    def _update_output_token(self, token: str, record: TokenRecord, new_balance: int) -> None:
        record.balance = new_balance
        self._decrease_denorm(token, record)

    def _increase_denorm(self, token: str, record: TokenRecord) -> None:
        """Step a token's weight up towards its desired weight."""
        now = self._ledger.now
        if record.denorm >= record.desired_denorm:
            return
        if now - record.last_denorm_update < self.settings.weight_update_delay:
            logger.debug("weight_update_too_soon", pool=self.address, token=token)
            return

        old_denorm = record.denorm
        denorm = min(badd(old_denorm, bmul(old_denorm, self._swap_fee // 2)), record.desired_denorm)
        if self._committed_weight() - old_denorm + denorm > MAX_TOTAL_WEIGHT:
            logger.debug("weight_increase_skipped", pool=self.address, token=token, denorm=denorm)
            return

        self._total_weight = badd(bsub(self._total_weight, old_denorm), denorm)
        record.denorm = denorm
        record.last_denorm_update = now
        logger.debug("weight_increased", pool=self.address, token=token, old=old_denorm, new=denorm)

    def _decrease_denorm(self, token: str, record: TokenRecord) -> None:
        """Step a token's weight down towards its desired weight, unbinding at zero."""
        now = self._ledger.now
        if record.denorm <= record.desired_denorm:
            return
        if now - record.last_denorm_update < self.settings.weight_update_delay:
            logger.debug("weight_update_too_soon", pool=self.address, token=token)
            return

        old_denorm = record.denorm
        denorm = max(bsub(old_denorm, bmul(old_denorm, self._swap_fee // 2)), record.desired_denorm)
        if record.desired_denorm == 0 and denorm <= MIN_WEIGHT:
            self._unbind(token)
            return

        self._total_weight = badd(bsub(self._total_weight, old_denorm), denorm)
        record.denorm = denorm
        record.last_denorm_update = now
        logger.debug("weight_decreased", pool=self.address, token=token, old=old_denorm, new=denorm)


# =============================================================================
# Module helpers
# =============================================================================


def _pricing_terms(record: TokenRecord) -> tuple[int, int]:
    """Balance and weight used for pricing a token."""
    if record.ready:
        return record.balance, record.denorm
    return record.minimum_balance, MIN_WEIGHT


def _check_weight(token: str, denorm: int) -> None:
    if denorm < MIN_WEIGHT:
        raise BelowMinWeight(f"Weight {denorm} of {token} is below MIN_WEIGHT")
    if denorm > MAX_WEIGHT:
        raise AboveMaxWeight(f"Weight {denorm} of {token} is above MAX_WEIGHT")


def _check_prices_after(
    spot_price_before: int,
    spot_price_after: int,
    max_price: int,
    amount_in: int,
    amount_out: int,
) -> None:
    if spot_price_after > max_price:
        raise LimitPrice(f"Spot price after swap {spot_price_after} above limit {max_price}")
    if spot_price_before > bdiv(amount_in, amount_out):
        raise MathApprox("Effective price is below the spot price")
