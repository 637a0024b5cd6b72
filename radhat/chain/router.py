"""Routing engine: permissioned, all-or-nothing settlement to a treasury."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from radhat.chain.ledger import Ledger
from radhat.chain.registry import PermissionRegistry
from radhat.core.derivation import format_address, is_zero_address
from radhat.core.errors import (
    LengthMismatch,
    NotAuthorizedCaller,
    TreasuryNotAllowed,
    ValidationError,
    ZeroAddress,
    ZeroTreasury,
)

logger = logging.getLogger(__name__)

ROUTER_CODE = b"radhat:FundRouter"


class RoutingEngine:
    """Handle onto a routing engine deployed in a ``Ledger``.

    Holds no state of its own beyond the balances credited to its address;
    it accepts bare value from anyone, forwarders included.
    """

    def __init__(self, ledger: Ledger, address: str, registry: PermissionRegistry) -> None:
        self.ledger = ledger
        self.address = format_address(address)
        self.registry = registry

    @classmethod
    def deploy(
        cls,
        ledger: Ledger,
        deployer: str,
        registry: PermissionRegistry | None,
        *,
        address: str | None = None,
    ) -> "RoutingEngine":
        if registry is None or is_zero_address(registry.address):
            raise ZeroAddress("storage=0")
        address = format_address(address) if address else ledger.new_address("router")
        router = cls(ledger, address, registry)
        with ledger.transaction(deployer):
            ledger.install(address, ROUTER_CODE, router)
        return router

    def receive(self, ledger: Ledger, this: str, sender: str, amount: int) -> None:
        pass

    def transfer_funds(
        self,
        sender: str,
        value_amount: int,
        tokens: Sequence[str],
        amounts: Sequence[int],
        treasury: str,
    ) -> str:
        """Move ``value_amount`` and each token amount to ``treasury``.

        Either every transfer happens or none does. Zero amounts are skipped.
        Returns the transaction hash.
        """
        if is_zero_address(treasury):
            raise ZeroTreasury()
        treasury = format_address(treasury)

        if not self.registry.is_allowed_caller_and_treasury(sender, treasury):
            if not self.registry.is_allowed_caller(sender):
                raise NotAuthorizedCaller(format_address(sender))
            raise TreasuryNotAllowed(treasury)

        if len(tokens) != len(amounts):
            raise LengthMismatch(len(tokens), len(amounts))
        if value_amount < 0 or any(a < 0 for a in amounts):
            raise ValidationError("amounts must be non-negative")

        with self.ledger.transaction(sender) as tx_hash:
            if value_amount > 0:
                self.ledger.move_value(self.address, treasury, value_amount)

            for token, amount in zip(tokens, amounts):
                if amount == 0:
                    continue
                self.ledger.move_token(token, self.address, treasury, amount)

            self.ledger.emit(
                "FundsRouted",
                self.address,
                treasury=treasury,
                value=value_amount,
                tokens=[format_address(t) for t in tokens],
                amounts=list(amounts),
            )

        logger.info(
            "Routed %d wei and %d token entries to %s", value_amount, len(tokens), treasury,
            extra={"tx_hash": tx_hash, "amount": value_amount},
        )
        return tx_hash
