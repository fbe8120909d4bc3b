"""
Error taxonomy for the replication engine.

Every failure a follower can see maps to one of these classes, so the
notification text can always name what went wrong.
"""

from enum import Enum
from typing import Optional


class ReplicatorError(Exception):
    """Base class for all replication engine errors"""


class CredentialError(ReplicatorError):
    """Signing key could not be recovered (wrong secret or corrupt ciphertext)"""


class PolicyError(ReplicatorError):
    """Scaling policy is invalid or produced a non-positive amount"""


class ExecutionErrorKind(Enum):
    """Reasons a replica swap could not be executed"""
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALLOWANCE_FAILED = "allowance_failed"
    SUBMISSION_REJECTED = "submission_rejected"
    SIGNING_FAILED = "signing_failed"
    TIMEOUT = "timeout"
    DUPLICATE = "duplicate"
    INTERRUPTED = "interrupted"


_KIND_DESCRIPTIONS = {
    ExecutionErrorKind.INSUFFICIENT_BALANCE: "Insufficient balance",
    ExecutionErrorKind.ALLOWANCE_FAILED: "Token approval failed",
    ExecutionErrorKind.SUBMISSION_REJECTED: "Transaction rejected by the network",
    ExecutionErrorKind.SIGNING_FAILED: "Transaction could not be signed",
    ExecutionErrorKind.TIMEOUT: "Transaction not confirmed in time",
    ExecutionErrorKind.DUPLICATE: "Trade already replicated",
    ExecutionErrorKind.INTERRUPTED: "Replication stopped by shutdown",
}


class ExecutionError(ReplicatorError):
    """Submission-layer failure with a distinguishable kind"""

    def __init__(self, kind: ExecutionErrorKind, detail: str = "", tx_hash: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        self.tx_hash = tx_hash
        message = _KIND_DESCRIPTIONS[kind]
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Only transient timeouts may be retried."""
        return self.kind == ExecutionErrorKind.TIMEOUT


class WatcherError(ReplicatorError):
    """Chain feed dropped or could not be (re)subscribed"""


def describe_error(error: BaseException) -> str:
    """Human readable reason for a failed replication, safe to show to users."""
    if isinstance(error, ExecutionError):
        return str(error)
    if isinstance(error, CredentialError):
        return f"Credential error: {error}"
    if isinstance(error, PolicyError):
        return f"Sizing policy error: {error}"
    if isinstance(error, WatcherError):
        return f"Watcher error: {error}"
    return f"Unexpected error ({type(error).__name__})"
