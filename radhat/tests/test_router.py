"""Tests for radhat.chain.router: permissioned all-or-nothing settlement."""

from __future__ import annotations

import pytest

from radhat.chain.ledger import Ledger
from radhat.chain.registry import PermissionRegistry
from radhat.chain.router import RoutingEngine
from radhat.chain.simulated import LocalChain
from radhat.core.derivation import ZERO_ADDRESS, format_address
from radhat.core.errors import (
    AuthorizationError,
    LengthMismatch,
    NotAuthorizedCaller,
    TransferFailure,
    TreasuryNotAllowed,
    ValidationError,
    ZeroAddress,
    ZeroTreasury,
)
from radhat.core.types import Capability

from radhat.tests.conftest import FUNDER, ONE_ETH, OPERATOR, OUTSIDER, TREASURY


@pytest.fixture
def router(local_chain: LocalChain) -> RoutingEngine:
    return local_chain.router


@pytest.fixture
def funded_router(ledger: Ledger, router: RoutingEngine) -> RoutingEngine:
    ledger.send(FUNDER, router.address, ONE_ETH)
    return router


class TestDeployment:
    def test_missing_registry_rejected(self, ledger: Ledger):
        with pytest.raises(ZeroAddress, match="storage=0"):
            RoutingEngine.deploy(ledger, OPERATOR, None)

    def test_zero_registry_rejected(self, ledger: Ledger):
        with pytest.raises(ZeroAddress):
            RoutingEngine.deploy(ledger, OPERATOR, PermissionRegistry(ledger, ZERO_ADDRESS))

    def test_accepts_bare_value(self, ledger: Ledger, router: RoutingEngine):
        ledger.send(FUNDER, router.address, 5)
        assert ledger.balance_of(router.address) == 5


class TestValidation:
    def test_zero_treasury(self, funded_router: RoutingEngine):
        with pytest.raises(ZeroTreasury):
            funded_router.transfer_funds(OPERATOR, 1, [], [], ZERO_ADDRESS)

    def test_zero_treasury_is_validation_error(self, funded_router: RoutingEngine):
        with pytest.raises(ValidationError):
            funded_router.transfer_funds(OPERATOR, 1, [], [], ZERO_ADDRESS)

    def test_negative_value_rejected(self, ledger: Ledger, funded_router: RoutingEngine):
        with pytest.raises(ValidationError):
            funded_router.transfer_funds(OPERATOR, -5, [], [], TREASURY)
        assert ledger.events("FundsRouted") == []

    def test_negative_token_amount_rejected_before_value_moves(
        self, ledger: Ledger, funded_router: RoutingEngine
    ):
        token = ledger.create_token()
        ledger.mint_token(token, funded_router.address, 10)

        with pytest.raises(ValidationError):
            funded_router.transfer_funds(OPERATOR, ONE_ETH, [token], [-1], TREASURY)

        assert ledger.balance_of(funded_router.address) == ONE_ETH
        assert ledger.balance_of(TREASURY) == 0

    def test_length_mismatch_before_any_transfer(
        self, ledger: Ledger, local_chain: LocalChain, funded_router: RoutingEngine
    ):
        token = ledger.create_token()
        ledger.mint_token(token, funded_router.address, 10)

        with pytest.raises(LengthMismatch):
            funded_router.transfer_funds(OPERATOR, ONE_ETH, [token], [1, 2], TREASURY)

        assert ledger.balance_of(funded_router.address) == ONE_ETH
        assert ledger.balance_of(TREASURY) == 0
        assert ledger.token_balance(token, funded_router.address) == 10


class TestAuthorization:
    def test_unauthorized_caller(self, funded_router: RoutingEngine):
        with pytest.raises(NotAuthorizedCaller):
            funded_router.transfer_funds(OUTSIDER, 1, [], [], TREASURY)

    def test_treasury_not_allowed(self, funded_router: RoutingEngine):
        with pytest.raises(TreasuryNotAllowed):
            funded_router.transfer_funds(OPERATOR, 1, [], [], OUTSIDER)

    def test_treasury_checked_regardless_of_caller_capability(
        self, local_chain: LocalChain, funded_router: RoutingEngine
    ):
        # Caller holds both bits, destination holds none.
        local_chain.registry.set_permissions(OPERATOR, OPERATOR, Capability.CALLER | Capability.TREASURY)
        with pytest.raises(AuthorizationError):
            funded_router.transfer_funds(OPERATOR, 1, [], [], OUTSIDER)

    def test_caller_with_only_treasury_bit(self, local_chain: LocalChain, funded_router: RoutingEngine):
        local_chain.registry.set_permissions(OPERATOR, OUTSIDER, Capability.TREASURY)
        with pytest.raises(NotAuthorizedCaller):
            funded_router.transfer_funds(OUTSIDER, 1, [], [], TREASURY)

    def test_revoked_treasury(self, local_chain: LocalChain, funded_router: RoutingEngine):
        local_chain.registry.set_permissions(OPERATOR, TREASURY, Capability.NONE)
        with pytest.raises(TreasuryNotAllowed):
            funded_router.transfer_funds(OPERATOR, 1, [], [], TREASURY)


class TestSettlement:
    def test_value_moved(self, ledger: Ledger, funded_router: RoutingEngine):
        tx = funded_router.transfer_funds(OPERATOR, ONE_ETH, [], [], TREASURY)
        assert tx.startswith("0x")
        assert ledger.balance_of(TREASURY) == ONE_ETH
        assert ledger.balance_of(funded_router.address) == 0

    def test_partial_value(self, ledger: Ledger, funded_router: RoutingEngine):
        funded_router.transfer_funds(OPERATOR, 400, [], [], TREASURY)
        assert ledger.balance_of(TREASURY) == 400
        assert ledger.balance_of(funded_router.address) == ONE_ETH - 400

    def test_zero_value_noop(self, ledger: Ledger, funded_router: RoutingEngine):
        funded_router.transfer_funds(OPERATOR, 0, [], [], TREASURY)
        assert ledger.balance_of(TREASURY) == 0

    def test_tokens_and_value_together(self, ledger: Ledger, funded_router: RoutingEngine):
        t1, t2 = ledger.create_token(), ledger.create_token()
        ledger.mint_token(t1, funded_router.address, 100)
        ledger.mint_token(t2, funded_router.address, 50)

        funded_router.transfer_funds(OPERATOR, 10, [t1, t2], [100, 20], TREASURY)

        assert ledger.balance_of(TREASURY) == 10
        assert ledger.token_balance(t1, TREASURY) == 100
        assert ledger.token_balance(t2, TREASURY) == 20
        assert ledger.token_balance(t2, funded_router.address) == 30

    def test_zero_amount_entry_skipped(self, ledger: Ledger, funded_router: RoutingEngine):
        t1, t2 = ledger.create_token(), ledger.create_token()
        ledger.mint_token(t2, funded_router.address, 5)
        # t1 is never held; a zero amount must not even be attempted.
        funded_router.transfer_funds(OPERATOR, 0, [t1, t2], [0, 5], TREASURY)
        assert ledger.token_balance(t2, TREASURY) == 5

    def test_insufficient_value_moves_nothing(self, ledger: Ledger, funded_router: RoutingEngine):
        with pytest.raises(TransferFailure):
            funded_router.transfer_funds(OPERATOR, 2 * ONE_ETH, [], [], TREASURY)
        assert ledger.balance_of(funded_router.address) == ONE_ETH

    def test_token_failure_rolls_back_value(self, ledger: Ledger, funded_router: RoutingEngine):
        t1, t2 = ledger.create_token(), ledger.create_token()
        ledger.mint_token(t1, funded_router.address, 100)
        ledger.mint_token(t2, funded_router.address, 1)

        with pytest.raises(TransferFailure):
            funded_router.transfer_funds(OPERATOR, ONE_ETH, [t1, t2], [100, 2], TREASURY)

        assert ledger.balance_of(TREASURY) == 0
        assert ledger.balance_of(funded_router.address) == ONE_ETH
        assert ledger.token_balance(t1, funded_router.address) == 100
        assert ledger.token_balance(t1, TREASURY) == 0
        assert ledger.events("FundsRouted") == []

    def test_rejecting_treasury_rolls_back(self, ledger: Ledger, funded_router: RoutingEngine):
        ledger.set_rejecting(TREASURY)
        with pytest.raises(TransferFailure):
            funded_router.transfer_funds(OPERATOR, 1, [], [], TREASURY)
        assert ledger.balance_of(funded_router.address) == ONE_ETH

    def test_event_emitted(self, ledger: Ledger, funded_router: RoutingEngine):
        funded_router.transfer_funds(OPERATOR, 5, [], [], TREASURY)
        [event] = ledger.events("FundsRouted")
        assert event.args["treasury"] == format_address(TREASURY)
        assert event.args["value"] == 5
