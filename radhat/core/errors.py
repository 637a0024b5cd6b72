"""Domain exception hierarchy.

Every failure raised by the chain units, the store or the orchestrator is a
``RadhatError``. The HTTP layer maps the families below onto the structured
error envelope in ``radhat.api.errors``:

    ValidationError       malformed input, rejected before anything mutates
    AuthorizationError    a capability or ownership check failed
    TransferFailure       a value or token move failed inside a settlement
    DeploymentCollision   the target address already holds content
    InfrastructureError   the chain client could not be reached
    InvalidTransition     a non-monotonic status change was requested
    NotFoundError         no record for the given key
    ConfigError           settings are missing or inconsistent
"""

from __future__ import annotations


class RadhatError(Exception):
    """Base class for all domain errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


# ── Validation ───────────────────────────────────────────────────────────────


class ValidationError(RadhatError, ValueError):
    """Malformed input."""

    code = "VALIDATION_ERROR"


class ZeroAddress(ValidationError):
    """An address argument that must be set was the zero address."""


class ZeroTreasury(ValidationError):
    """Settlement was requested towards the zero address."""

    def __init__(self, message: str = "treasury is the zero address") -> None:
        super().__init__(message)


class LengthMismatch(ValidationError):
    """Token and amount lists differ in length."""

    def __init__(self, tokens: int, amounts: int) -> None:
        super().__init__(f"{tokens} tokens but {amounts} amounts")
        self.tokens = tokens
        self.amounts = amounts


# ── Authorization ────────────────────────────────────────────────────────────


class AuthorizationError(RadhatError):
    """A permission check failed."""

    code = "FORBIDDEN"


class NotOwner(AuthorizationError):
    """Caller is not the registry owner."""

    def __init__(self, sender: str) -> None:
        super().__init__(f"{sender} is not the registry owner")
        self.sender = sender


class NotAuthorizedCaller(AuthorizationError):
    """Caller lacks the CALLER capability."""

    def __init__(self, caller: str) -> None:
        super().__init__(f"{caller} is not an allowed caller")
        self.caller = caller


class TreasuryNotAllowed(AuthorizationError):
    """Destination lacks the TREASURY capability."""

    def __init__(self, treasury: str) -> None:
        super().__init__(f"{treasury} is not an allowed treasury")
        self.treasury = treasury


# ── Chain outcomes ───────────────────────────────────────────────────────────


class TransferFailure(RadhatError):
    """A value or token transfer failed; the enclosing invocation reverted."""

    code = "TRANSFER_FAILED"


class DeploymentCollision(RadhatError):
    """Content already exists at the derived address."""

    code = "CONFLICT"

    def __init__(self, address: str) -> None:
        super().__init__(f"content already deployed at {address}")
        self.address = address


class TransactionReverted(RadhatError):
    """A submitted transaction was mined but reverted."""

    code = "TRANSACTION_REVERTED"

    def __init__(self, message: str = "", tx_hash: str | None = None) -> None:
        super().__init__(message or "transaction reverted")
        self.tx_hash = tx_hash


class InfrastructureError(RadhatError):
    """The chain client is unreachable or returned a transport error."""

    code = "DEPENDENCY_ERROR"


# ── Store / service ──────────────────────────────────────────────────────────


class InvalidTransition(RadhatError):
    """The store refused a status change that is not monotonic forward."""

    code = "CONFLICT"

    def __init__(self, address: str, current: str, requested: str) -> None:
        super().__init__(f"{address}: cannot move from {current} to {requested}")
        self.address = address
        self.current = current
        self.requested = requested


class NotFoundError(RadhatError):
    """Lookup found nothing."""

    code = "NOT_FOUND"


class ConfigError(RadhatError):
    """Settings are missing or inconsistent with the chain."""

    code = "CONFIG_ERROR"
