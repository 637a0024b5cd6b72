"""The forwarder: fixed content deployed at every deposit address.

Its runtime does exactly one thing. Whenever it is called, with or without
value, it CALLs its immutable destination with its whole balance and reverts
if that call fails, so a forwarder never keeps a stuck balance.

Runtime (37 bytes, Shanghai opcodes)::

    5f 5f 5f 5f          PUSH0 x4          retSize retOffset argsSize argsOffset
    47                   SELFBALANCE       value
    73 <destination>     PUSH20 dest
    5a                   GAS
    f1                   CALL
    15                   ISZERO
    60 21                PUSH1 0x21
    57                   JUMPI             -> revert on failure
    00                   STOP
    5b 5f 5f fd          JUMPDEST PUSH0 PUSH0 REVERT

Creation code is a 9-byte constructor that copies the runtime into memory
and returns it. The content hash consumed by address derivation is
keccak256(creation code); the code and its hash only ever exist together in
a ``ForwarderTemplate``. Changing one byte here moves every address that was
precomputed but not yet deployed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from radhat.core.derivation import format_address, is_zero_address, keccak256, parse_address
from radhat.core.errors import ZeroAddress

if TYPE_CHECKING:
    from radhat.chain.ledger import Ledger

logger = logging.getLogger(__name__)

_RUNTIME_HEAD = bytes.fromhex("5f5f5f5f4773")
_RUNTIME_TAIL = bytes.fromhex("5af115602157005b5f5ffd")
RUNTIME_LENGTH = len(_RUNTIME_HEAD) + 20 + len(_RUNTIME_TAIL)

# PUSH1 len DUP1 PUSH1 9 PUSH0 CODECOPY PUSH0 RETURN
_CONSTRUCTOR = bytes([0x60, RUNTIME_LENGTH, 0x80, 0x60, 0x09, 0x5F, 0x39, 0x5F, 0xF3])


@dataclass(frozen=True)
class ForwarderTemplate:
    """Compiled forwarder for one destination, with its content hash."""

    destination: str
    runtime_code: bytes = field(repr=False)
    creation_code: bytes = field(repr=False)
    content_hash: bytes

    @classmethod
    def for_destination(cls, destination: str | bytes) -> "ForwarderTemplate":
        if is_zero_address(destination):
            raise ZeroAddress("forwarder destination is the zero address")
        runtime = _RUNTIME_HEAD + parse_address(destination) + _RUNTIME_TAIL
        creation = _CONSTRUCTOR + runtime
        return cls(
            destination=format_address(destination),
            runtime_code=runtime,
            creation_code=creation,
            content_hash=keccak256(creation),
        )

    @property
    def content_hash_hex(self) -> str:
        return "0x" + self.content_hash.hex()


@dataclass(frozen=True)
class Forwarder:
    """Ledger behaviour of the forwarder runtime.

    Instances hold no state besides the destination baked into the code, so
    one instance serves every address deployed from the same template.
    """

    destination: str

    def receive(self, ledger: "Ledger", this: str, sender: str, amount: int) -> None:
        balance = ledger.balance_of(this)
        if balance == 0:
            return
        # Plain value call: custody lands in the destination's own balance.
        ledger.move_value(this, self.destination, balance)
        ledger.emit("Forwarded", this, destination=self.destination, amount=balance)
