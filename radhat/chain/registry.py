"""Permission registry: owner-gated two-bit capability table.

Each address maps to a ``Capability`` set. ``set_permissions`` *replaces*
the stored set; it never merges. Setting CALLER and then TREASURY on the
same address leaves only TREASURY, so an address that needs both must be
written once with ``Capability.CALLER | Capability.TREASURY``.
"""

from __future__ import annotations

import logging

from radhat.chain.ledger import Ledger
from radhat.core.derivation import format_address, is_zero_address
from radhat.core.errors import NotOwner, ValidationError, ZeroAddress
from radhat.core.types import ALL_CAPABILITIES, Capability

logger = logging.getLogger(__name__)

REGISTRY_CODE = b"radhat:FundRouterStorage"


class PermissionRegistry:
    """Handle onto a registry deployed in a ``Ledger``."""

    def __init__(self, ledger: Ledger, address: str) -> None:
        self.ledger = ledger
        self.address = format_address(address)

    @classmethod
    def deploy(cls, ledger: Ledger, owner: str, *, address: str | None = None) -> "PermissionRegistry":
        if is_zero_address(owner):
            raise ZeroAddress("registry owner is the zero address")
        address = format_address(address) if address else ledger.new_address("registry")
        registry = cls(ledger, address)
        with ledger.transaction(owner):
            ledger.install(address, REGISTRY_CODE, registry)
            slots = ledger.storage(address)
            slots["owner"] = format_address(owner)
            slots["permissions"] = {}
            ledger.emit("OwnershipTransferred", address, previous=None, new=slots["owner"])
        return registry

    # Registries accept no value.
    def receive(self, ledger: Ledger, this: str, sender: str, amount: int) -> None:
        if amount:
            raise ValidationError("registry does not accept value")

    # ── Reads ────────────────────────────────────────────────────────────

    @property
    def owner(self) -> str:
        return self._slots()["owner"]

    def permissions(self, address: str) -> Capability:
        return Capability(self._slots()["permissions"].get(format_address(address), 0))

    def is_allowed_caller(self, address: str) -> bool:
        return Capability.CALLER in self.permissions(address)

    def is_allowed_treasury(self, address: str) -> bool:
        return Capability.TREASURY in self.permissions(address)

    def is_allowed_caller_and_treasury(self, caller: str, treasury: str) -> bool:
        """Both checks in one read, for the settlement hot path."""
        table = self._slots()["permissions"]
        caller_bits = table.get(format_address(caller), 0)
        treasury_bits = table.get(format_address(treasury), 0)
        return bool(caller_bits & Capability.CALLER) and bool(treasury_bits & Capability.TREASURY)

    # ── Owner operations ─────────────────────────────────────────────────

    def set_permissions(self, sender: str, target: str, bitmask: int | Capability) -> None:
        """Overwrite ``target``'s capability set."""
        bits = int(bitmask)
        with self.ledger.transaction(sender):
            self._only_owner(sender)
            if bits < 0 or bits & ~int(ALL_CAPABILITIES):
                raise ValidationError(f"unknown capability bits in {bits:#04x}")
            target = format_address(target)
            self._slots()["permissions"][target] = bits
            self.ledger.emit("PermissionsSet", self.address, target=target, permissions=bits)
        logger.info("Permissions for %s set to %#04x", target, bits)

    def transfer_ownership(self, sender: str, new_owner: str) -> None:
        with self.ledger.transaction(sender):
            self._only_owner(sender)
            if is_zero_address(new_owner):
                raise ZeroAddress("new owner is the zero address")
            slots = self._slots()
            previous, slots["owner"] = slots["owner"], format_address(new_owner)
            self.ledger.emit("OwnershipTransferred", self.address, previous=previous, new=slots["owner"])

    def _only_owner(self, sender: str) -> None:
        if format_address(sender) != self.owner:
            raise NotOwner(format_address(sender))

    def _slots(self) -> dict:
        return self.ledger.storage(self.address)
