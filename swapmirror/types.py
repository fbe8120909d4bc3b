"""
Core types for swap replication
Data structures shared by the decoder, executor and watcher
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

# Conventional placeholder address for the chain's native asset
NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

TxHash = str


class LeaderState(Enum):
    """Lifecycle of a tracked leader address"""
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    DECODING = "decoding"
    DISPATCHING = "dispatching"
    UNSUBSCRIBED = "unsubscribed"


class AttemptOutcome(Enum):
    """Result of one follower replication"""
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class SwapIntent:
    """Decoded leader swap. Immutable, shared by every follower attempt."""
    source_token: str
    destination_token: str
    amount_in: int
    deadline: int
    leader: str
    tx_hash: TxHash
    method: str = ""
    path: Tuple[str, ...] = ()
    amount_out_min: int = 0
    block_number: Optional[int] = None

    @property
    def is_native_in(self) -> bool:
        return self.source_token == NATIVE_TOKEN

    @property
    def is_native_out(self) -> bool:
        return self.destination_token == NATIVE_TOKEN


@dataclass(frozen=True)
class NotASwap:
    """Decoder verdict for transactions that are not replicable swaps"""
    tx_hash: TxHash
    reason: str


@dataclass(frozen=True)
class CredentialRecord:
    """What the credential store keeps for a follower. Never holds the secret."""
    follower_id: str
    wallet_address: str
    encrypted_key: str


@dataclass(frozen=True)
class FollowerProfile:
    """Everything the executor needs to act for one follower"""
    follower_id: str
    wallet_address: str
    encrypted_key: str
    secret: str = field(repr=False)

    @classmethod
    def from_record(cls, record: CredentialRecord, secret: str) -> "FollowerProfile":
        return cls(
            follower_id=record.follower_id,
            wallet_address=record.wallet_address,
            encrypted_key=record.encrypted_key,
            secret=secret,
        )


@dataclass(frozen=True)
class ReplicationAttempt:
    """Outcome of replicating one intent for one follower"""
    follower_id: str
    intent: SwapIntent
    outcome: AttemptOutcome
    scaled_amount: Optional[int] = None
    tx_hash: Optional[TxHash] = None
    error_kind: Optional[str] = None
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    @classmethod
    def succeeded(cls, follower_id: str, intent: SwapIntent, tx_hash: TxHash,
                  scaled_amount: Optional[int] = None) -> "ReplicationAttempt":
        return cls(
            follower_id=follower_id,
            intent=intent,
            outcome=AttemptOutcome.SUCCESS,
            scaled_amount=scaled_amount,
            tx_hash=tx_hash,
        )

    @classmethod
    def failed(cls, follower_id: str, intent: SwapIntent, error_kind: str,
               reason: str) -> "ReplicationAttempt":
        return cls(
            follower_id=follower_id,
            intent=intent,
            outcome=AttemptOutcome.FAILURE,
            error_kind=error_kind,
            reason=reason,
        )
