"""In-process ledger with EVM-like atomic invocations.

Holds native balances, token balances, deployed code, per-contract storage
and an event log. Every top-level invocation runs inside ``transaction()``:
the state is snapshotted first and restored wholesale if anything raises, so
no intermediate state of a reverted call is ever observable. Calls made from
inside a running invocation join it instead of opening their own.

Contracts are plain handler objects bound to an address. They keep their
mutable state in ``ledger.storage(address)`` so that rollbacks cover it.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

from radhat.core.derivation import format_address, keccak256
from radhat.core.errors import TransferFailure, ValidationError

logger = logging.getLogger(__name__)


class ContractHandler(Protocol):
    """Behaviour executed when a contract address is called or paid."""

    def receive(self, ledger: "Ledger", this: str, sender: str, amount: int) -> None: ...


@dataclass
class Event:
    """A log entry emitted during an invocation."""

    name: str
    address: str
    tx_hash: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class Receipt:
    """Outcome of one top-level invocation."""

    tx_hash: str
    sender: str
    success: bool
    error: str | None = None


@dataclass
class LedgerState:
    """Complete ledger state at a point in time."""

    balances: dict[str, int] = field(default_factory=dict)
    code: dict[str, bytes] = field(default_factory=dict)
    handlers: dict[str, ContractHandler] = field(default_factory=dict)
    tokens: dict[str, dict[str, int]] = field(default_factory=dict)  # token → holder → amount
    storage: dict[str, dict[str, Any]] = field(default_factory=dict)
    events: list[Event] = field(default_factory=list)
    rejecting: set[str] = field(default_factory=set)

    def clone(self) -> "LedgerState":
        """Copy everything mutable; handlers are stateless and shared."""
        return LedgerState(
            balances=dict(self.balances),
            code=dict(self.code),
            handlers=dict(self.handlers),
            tokens={token: dict(holders) for token, holders in self.tokens.items()},
            storage=copy.deepcopy(self.storage),
            events=list(self.events),
            rejecting=set(self.rejecting),
        )


class Ledger:
    """Single-threaded ledger; callers serialize access (asyncio is enough)."""

    def __init__(self) -> None:
        self.state = LedgerState()
        self.receipts: list[Receipt] = []
        self._tx_counter = 0
        self._current_tx: str | None = None
        self._address_counter = 0

    # ── Invocation ───────────────────────────────────────────────────────

    @contextmanager
    def transaction(self, sender: str) -> Iterator[str]:
        """Run a block atomically and yield its transaction hash."""
        if self._current_tx is not None:
            yield self._current_tx
            return

        self._tx_counter += 1
        tx_hash = "0x" + keccak256(b"radhat-ledger" + self._tx_counter.to_bytes(8, "big")).hex()
        snapshot = self.state.clone()
        self._current_tx = tx_hash
        try:
            yield tx_hash
        except Exception as exc:
            self.state = snapshot
            self.receipts.append(Receipt(tx_hash, format_address(sender), False, str(exc)))
            logger.debug("Reverted %s: %s", tx_hash, exc, extra={"tx_hash": tx_hash})
            raise
        else:
            self.receipts.append(Receipt(tx_hash, format_address(sender), True))
        finally:
            self._current_tx = None

    @property
    def in_transaction(self) -> bool:
        return self._current_tx is not None

    def emit(self, name: str, address: str, **args: Any) -> None:
        if self._current_tx is None:
            raise RuntimeError("events can only be emitted inside a transaction")
        self.state.events.append(Event(name, format_address(address), self._current_tx, args))

    def events(self, name: str | None = None) -> list[Event]:
        return [e for e in self.state.events if name is None or e.name == name]

    # ── Accounts & code ──────────────────────────────────────────────────

    def new_address(self, label: str = "contract") -> str:
        """Allocate a fresh, deterministic address for a non-CREATE2 deployment."""
        self._address_counter += 1
        digest = keccak256(label.encode() + self._address_counter.to_bytes(8, "big"))
        return format_address(digest[12:])

    def balance_of(self, address: str) -> int:
        return self.state.balances.get(format_address(address), 0)

    def code_at(self, address: str) -> bytes:
        return self.state.code.get(format_address(address), b"")

    def has_code(self, address: str) -> bool:
        return bool(self.code_at(address))

    def storage(self, address: str) -> dict[str, Any]:
        return self.state.storage.setdefault(format_address(address), {})

    def install(self, address: str, code: bytes, handler: ContractHandler) -> None:
        """Place code and its behaviour at an address; must run inside a transaction."""
        if self._current_tx is None:
            raise RuntimeError("code can only be installed inside a transaction")
        if not code:
            raise ValidationError("cannot install empty code")
        key = format_address(address)
        self.state.code[key] = code
        self.state.handlers[key] = handler

    def set_rejecting(self, address: str, rejecting: bool = True) -> None:
        """Make an account refuse incoming value (for failure scenarios)."""
        key = format_address(address)
        if rejecting:
            self.state.rejecting.add(key)
        else:
            self.state.rejecting.discard(key)

    def credit(self, address: str, amount: int) -> None:
        """Mint native value out of thin air (faucet)."""
        if amount < 0:
            raise ValidationError("amount must be non-negative")
        key = format_address(address)
        self.state.balances[key] = self.state.balances.get(key, 0) + amount

    # ── Value movement ───────────────────────────────────────────────────

    def move_value(self, sender: str, to: str, amount: int) -> None:
        """Move native value and run the recipient's code, inside a transaction."""
        if self._current_tx is None:
            raise RuntimeError("value can only move inside a transaction")
        if amount < 0:
            raise ValidationError("amount must be non-negative")
        src, dst = format_address(sender), format_address(to)
        available = self.state.balances.get(src, 0)
        if available < amount:
            raise TransferFailure(f"{src} holds {available}, cannot send {amount}")
        if dst in self.state.rejecting:
            raise TransferFailure(f"{dst} rejected {amount}")

        self.state.balances[src] = available - amount
        self.state.balances[dst] = self.state.balances.get(dst, 0) + amount

        handler = self.state.handlers.get(dst)
        if handler is not None:
            handler.receive(self, dst, src, amount)

    def send(self, sender: str, to: str, amount: int) -> str:
        """Top-level value transfer; returns the transaction hash."""
        with self.transaction(sender) as tx_hash:
            self.move_value(sender, to, amount)
        return tx_hash

    def call(self, sender: str, to: str, value: int = 0) -> str:
        """Top-level call into a contract, optionally with value."""
        with self.transaction(sender) as tx_hash:
            if not self.has_code(to):
                raise ValidationError(f"{format_address(to)} has no code")
            self.move_value(sender, to, value)
        return tx_hash

    # ── Tokens ───────────────────────────────────────────────────────────

    def create_token(self, address: str | None = None) -> str:
        token = format_address(address) if address else self.new_address("token")
        self.state.tokens.setdefault(token, {})
        return token

    def mint_token(self, token: str, holder: str, amount: int) -> None:
        holders = self._token(token)
        key = format_address(holder)
        holders[key] = holders.get(key, 0) + amount

    def token_balance(self, token: str, holder: str) -> int:
        return self.state.tokens.get(format_address(token), {}).get(format_address(holder), 0)

    def move_token(self, token: str, sender: str, to: str, amount: int) -> None:
        """ERC-20 style transfer; fails rather than returning False."""
        if self._current_tx is None:
            raise RuntimeError("tokens can only move inside a transaction")
        key = format_address(token)
        if amount < 0:
            raise ValidationError("amount must be non-negative")
        if key not in self.state.tokens:
            raise TransferFailure(f"token {key} does not exist")
        holders = self.state.tokens[key]
        src, dst = format_address(sender), format_address(to)
        available = holders.get(src, 0)
        if available < amount:
            raise TransferFailure(f"{src} holds {available} of {key}, cannot send {amount}")
        holders[src] = available - amount
        holders[dst] = holders.get(dst, 0) + amount

    def _token(self, token: str) -> dict[str, int]:
        key = format_address(token)
        if key not in self.state.tokens:
            raise ValidationError(f"token {key} does not exist")
        return self.state.tokens[key]
