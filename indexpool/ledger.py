"""In-process ledger: clock, token registry and atomic execution.

Every stateful component (tokens, pools, the oracle, categories, the
controller) registers with the ledger. `Ledger.atomic()` snapshots all of
them and restores the snapshots if the block raises, so a failed operation
leaves no trace.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, ClassVar

import structlog

from indexpool.errors import UnknownToken

if TYPE_CHECKING:
    from indexpool.token import Token

logger = structlog.get_logger()

# Arbitrary epoch so that zero timestamps read as "long ago"
DEFAULT_START_TIME = 1_600_000_000

ReceiveHook = Callable[[str, str, str, int], None]


class Stateful:
    """Mixin for components whose state the ledger can snapshot.

    Subclasses list their state attributes in `_state_fields` (deep-copied)
    and attributes holding references to other components or callbacks in
    `_ref_fields` (containers copied, referents shared).
    """

    _state_fields: ClassVar[tuple[str, ...]] = ()
    _ref_fields: ClassVar[tuple[str, ...]] = ()

    def snapshot(self) -> dict[str, Any]:
        state = {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}
        for name in self._ref_fields:
            value = getattr(self, name)
            state[name] = value.copy() if isinstance(value, (dict, list)) else value
        return state

    def restore(self, state: dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)


class Ledger:
    """Shared clock and registry for one simulated chain."""

    def __init__(self, start_time: int = DEFAULT_START_TIME) -> None:
        self._now = start_time
        self._components: list[Stateful] = []
        self._tokens: dict[str, Token] = {}
        self._receive_hooks: dict[str, ReceiveHook] = {}
        self._address_counter = 0

    # --- Clock ---

    @property
    def now(self) -> int:
        """Current timestamp in seconds."""
        return self._now

    def advance(self, seconds: int) -> int:
        """Move the clock forward and return the new timestamp."""
        if seconds < 0:
            raise ValueError(f"Cannot move the clock backwards: {seconds}")
        self._now += seconds
        return self._now

    # --- Registry ---

    def new_address(self) -> str:
        """Allocate a fresh unique address."""
        self._address_counter += 1
        return f"0x{self._address_counter:040x}"

    def register(self, component: Stateful) -> None:
        self._components.append(component)

    def register_token(self, token: Token) -> None:
        if token.address in self._tokens:
            raise ValueError(f"Token {token.address} already registered")
        self._tokens[token.address] = token
        self.register(token)

    def get_token(self, address: str) -> Token:
        try:
            return self._tokens[address]
        except KeyError:
            raise UnknownToken(f"Token {address} is not registered") from None

    def add_receive_hook(self, account: str, hook: ReceiveHook) -> None:
        """Call `hook(token, src, dst, amount)` whenever `account` receives tokens."""
        self._receive_hooks[account] = hook

    def remove_receive_hook(self, account: str) -> None:
        self._receive_hooks.pop(account, None)

    def notify_receive(self, token: str, src: str, dst: str, amount: int) -> None:
        hook = self._receive_hooks.get(dst)
        if hook is not None:
            hook(token, src, dst, amount)

    # --- Atomic execution ---

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run a block all-or-nothing.

        On any exception every registered component is restored to its state
        at entry and the exception propagates.
        """
        snapshots = [(component, component.snapshot()) for component in self._components]
        try:
            yield
        except Exception as exc:
            for component, state in snapshots:
                component.restore(state)
            logger.debug("ledger_rolled_back", error=type(exc).__name__)
            raise
