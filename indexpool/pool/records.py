"""Per-token pool state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class TokenRecord:
    """State of one token in a pool.

    A bound token that is not ready has denorm 0 and holds less than its
    minimum balance; it is priced as if it held `minimum_balance` at
    MIN_WEIGHT until its real balance reaches that amount.

    Attributes:
        bound: Token is part of the pool
        ready: Token reached its minimum balance and trades normally
        last_denorm_update: Time of the last weight step
        denorm: Current denormalized weight (18-decimal)
        desired_denorm: Weight the token migrates towards
        index: Position in the pool's token list
        balance: Pool's accounted balance
        minimum_balance: Balance at which the token becomes ready
    """

    bound: bool = False
    ready: bool = False
    last_denorm_update: int = 0
    denorm: int = 0
    desired_denorm: int = 0
    index: int = 0
    balance: int = 0
    minimum_balance: int = 0


class UnbindHandler(Protocol):
    """Receives the balance of tokens removed from a pool."""

    address: str

    def handle_unbind_token(self, token: str, amount: int) -> None: ...


class FlashLoanRecipient(Protocol):
    """Borrower in a flash loan; must repay amount_due before returning."""

    address: str

    def receive_flash_loan(self, token: str, amount: int, amount_due: int, data: bytes) -> None: ...
