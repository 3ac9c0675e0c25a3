"""Exceptions raised by the options escrow engine.

Every failure surfaces to the immediate caller as one of these classes. The
hierarchy groups them by concern so callers can catch broadly
(``except OracleError``) or precisely (``except InvalidOracleAnswer``).
Validation errors also subclass ``ValueError``.
"""

from typing import Any, Dict, Optional


class EscrowError(Exception):
    """Base class for all options escrow errors."""

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.__class__.__name__
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error to a plain dict (for logs and API responses)."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": dict(self.context),
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(EscrowError, ValueError):
    """Malformed input or configuration."""


class InvalidArrayLength(ValidationError):
    pass


class InvalidAddress(ValidationError):
    pass


class InvalidOracleDecimals(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidTime(ValidationError):
    pass


class InvalidMaxTimeSinceLastUpdate(ValidationError):
    pass


class InvalidFee(ValidationError):
    pass


class InvalidInitialization(ValidationError):
    """Option terms or auction parameters failed validation."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid initialization: {reason}", reason=reason)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(EscrowError):
    """Caller is not allowed to perform the operation."""


class Unauthorized(AuthorizationError):
    pass


class OwnableUnauthorizedAccount(AuthorizationError):
    def __init__(self, account: str):
        self.account = account
        super().__init__(f"Account {account} is not the owner", account=account)


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


class OracleError(EscrowError):
    """Price could not be produced."""


class NoOracle(OracleError):
    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(f"No oracle registered for {asset}", asset=asset)


class InvalidOracleAnswer(OracleError):
    def __init__(self, feed: str, reason: str):
        self.feed = feed
        self.reason = reason
        super().__init__(
            f"Invalid answer from feed {feed}: {reason}", feed=feed, reason=reason
        )


class OracleAlreadySet(OracleError):
    def __init__(self, feed: str):
        self.feed = feed
        super().__init__(f"Oracle already set: {feed}", feed=feed)


# ---------------------------------------------------------------------------
# Escrow lifecycle
# ---------------------------------------------------------------------------


class LifecycleError(EscrowError):
    """Operation is not valid in the escrow's current phase or state."""


class AlreadyInitialized(LifecycleError):
    pass


class NotInitialized(LifecycleError):
    pass


class NoOptionMinted(LifecycleError):
    pass


class NotReverseExercisable(LifecycleError):
    pass


class AmountTooLarge(LifecycleError):
    pass


class ZeroSettlementAmount(LifecycleError):
    pass


class NonTransferrable(LifecycleError):
    pass


class BorrowingNotAllowed(LifecycleError):
    pass


class NothingToRepay(LifecycleError):
    pass


class NothingToRedeem(LifecycleError):
    pass


class InvalidExercise(LifecycleError):
    pass


class InvalidWithdraw(LifecycleError):
    pass


class VotingDelegationNotAllowed(LifecycleError):
    pass


class NoAllowedDelegateRegistry(LifecycleError):
    pass


# ---------------------------------------------------------------------------
# Decision failures (handle paths)
# ---------------------------------------------------------------------------


class InvalidBid(EscrowError):
    """A bid was rejected; ``status`` is the BidStatus that caused it."""

    def __init__(self, status: Any):
        self.status = status
        super().__init__(f"Invalid bid: {status.name}", status=status.name)


class InvalidTakeQuote(EscrowError):
    """A quote could not be taken; ``status`` is the QuoteStatus."""

    def __init__(self, status: Any, reason: Optional[str] = None):
        self.status = status
        self.reason = reason
        message = f"Invalid take quote: {status.name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, status=status.name, reason=reason)


# ---------------------------------------------------------------------------
# Ledger / registry
# ---------------------------------------------------------------------------


class InsufficientBalance(EscrowError):
    def __init__(self, token: str, account: str, balance: int, required: int):
        self.token = token
        self.account = account
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient {token} balance for {account}: {balance} < {required}",
            token=token,
            account=account,
            balance=balance,
            required=required,
        )


class NotAnEscrow(EscrowError):
    pass
