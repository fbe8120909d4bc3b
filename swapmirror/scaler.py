"""
Amount scaling policies.

All arithmetic is on integer base units; a token with 18 decimals never
passes through a float.
"""

from dataclasses import dataclass
from typing import Protocol

from .errors import PolicyError

BPS_DENOMINATOR = 10_000


class ScalingPolicy(Protocol):
    """Maps a leader's input amount to a follower's input amount"""

    def apply(self, amount: int) -> int:
        ...


@dataclass(frozen=True)
class FixedFractionPolicy:
    """Copy a fixed fraction of the leader's trade, in basis points (1000 = 10%)."""
    bps: int = 1000

    def __post_init__(self):
        if not isinstance(self.bps, int) or isinstance(self.bps, bool):
            raise PolicyError("Copy fraction must be an integer number of basis points")
        if self.bps <= 0 or self.bps > BPS_DENOMINATOR:
            raise PolicyError(f"Copy fraction must be in (0, {BPS_DENOMINATOR}] bps, got {self.bps}")

    def apply(self, amount: int) -> int:
        return amount * self.bps // BPS_DENOMINATOR


@dataclass(frozen=True)
class CappedPolicy:
    """Wraps another policy and caps its result at a maximum amount."""
    inner: ScalingPolicy
    cap: int

    def __post_init__(self):
        if self.cap <= 0:
            raise PolicyError(f"Cap must be positive, got {self.cap}")

    def apply(self, amount: int) -> int:
        return min(self.inner.apply(amount), self.cap)


DEFAULT_POLICY = FixedFractionPolicy()


def scale(original_amount: int, policy: ScalingPolicy = DEFAULT_POLICY) -> int:
    """
    Compute the replica trade size.

    Args:
        original_amount: Leader's input amount in base units
        policy: Scaling policy

    Returns:
        Follower input amount in base units

    Raises:
        PolicyError: if the amount is not an integer or the result is <= 0
    """
    if not isinstance(original_amount, int) or isinstance(original_amount, bool):
        raise PolicyError(f"Amount must be an integer, got {type(original_amount).__name__}")

    replica = policy.apply(original_amount)
    if replica <= 0:
        raise PolicyError(f"Policy produced non-positive amount {replica} from {original_amount}")
    return replica
