"""Fungible token balances."""

from __future__ import annotations

from typing import TYPE_CHECKING

from indexpool.errors import InsufficientBalance, NullAddress
from indexpool.ledger import Stateful
from indexpool.safe_int import S

if TYPE_CHECKING:
    from indexpool.ledger import Ledger


class Token(Stateful):
    """Token with balances, supply, and receive notifications.

    Transfers notify the ledger so that accounts with a receive hook can
    react, which is how callbacks into a pool mid-operation are modelled.
    """

    _state_fields = ("_balances", "_total_supply")

    def __init__(
        self,
        ledger: Ledger,
        name: str = "",
        symbol: str = "",
        address: str | None = None,
        decimals: int = 18,
    ) -> None:
        self._ledger = ledger
        self.address = address or ledger.new_address()
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self._balances: dict[str, int] = {}
        self._total_supply = 0
        ledger.register_token(self)

    def __repr__(self) -> str:
        return f"Token({self.symbol or self.address})"

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def mint(self, account: str, amount: int) -> None:
        if not account:
            raise NullAddress("Cannot mint to the null address")
        self._balances[account] = (S(self.balance_of(account)) + amount).to_uint256()
        self._total_supply = (S(self._total_supply) + amount).to_uint256()

    def burn(self, account: str, amount: int) -> None:
        """Destroy tokens held by account.

        Raises:
            InsufficientBalance: If account holds less than amount
        """
        balance = self.balance_of(account)
        if amount > balance:
            raise InsufficientBalance(f"{self!r}: burn {amount} from {account} holding {balance}")
        self._balances[account] = balance - amount
        self._total_supply -= amount

    def transfer(self, src: str, dst: str, amount: int) -> None:
        """Move tokens between accounts.

        Raises:
            InsufficientBalance: If src holds less than amount
            NullAddress: If dst is empty
        """
        if not dst:
            raise NullAddress("Cannot transfer to the null address")
        balance = self.balance_of(src)
        if amount > balance:
            raise InsufficientBalance(f"{self!r}: transfer {amount} from {src} holding {balance}")
        self._balances[src] = balance - amount
        self._balances[dst] = self.balance_of(dst) + amount
        self._ledger.notify_receive(self.address, src, dst, amount)
