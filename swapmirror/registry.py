"""
Follower registry and credential store interfaces
In-memory implementations used by tests and dry runs
"""

import asyncio
from collections import defaultdict
from typing import Dict, FrozenSet, Optional, Protocol, Set

from web3 import Web3

from .types import CredentialRecord


def normalize_leader(address: str) -> str:
    """Checksum a leader address; raises ValueError for invalid input."""
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return Web3.to_checksum_address(address)


class FollowerRegistry(Protocol):
    """Leader -> follower subscriptions. (leader, follower) pairs are unique."""

    async def add_follower(self, leader: str, follower_id: str) -> bool: ...

    async def remove_follower(self, leader: str, follower_id: str) -> bool: ...

    async def followers_of(self, leader: str) -> FrozenSet[str]: ...

    async def leaders_tracked_for_follower(self, follower_id: str) -> FrozenSet[str]: ...

    async def all_leaders(self) -> FrozenSet[str]: ...


class CredentialStore(Protocol):
    """Follower wallet records (address + encrypted key)"""

    async def get(self, follower_id: str) -> Optional[CredentialRecord]: ...

    async def put(self, record: CredentialRecord) -> None: ...


class InMemoryFollowerRegistry:
    """
    Registry kept in process memory.

    Reads return frozen snapshots and need no lock; mutations are
    serialized so concurrent subscribe/unsubscribe commands stay consistent.
    """

    def __init__(self):
        self._followers: Dict[str, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def add_follower(self, leader: str, follower_id: str) -> bool:
        leader = normalize_leader(leader)
        async with self._lock:
            followers = self._followers[leader]
            if follower_id in followers:
                return False
            self._followers[leader] = followers | {follower_id}
            return True

    async def remove_follower(self, leader: str, follower_id: str) -> bool:
        leader = normalize_leader(leader)
        async with self._lock:
            followers = self._followers.get(leader, set())
            if follower_id not in followers:
                return False
            remaining = followers - {follower_id}
            if remaining:
                self._followers[leader] = remaining
            else:
                del self._followers[leader]
            return True

    async def followers_of(self, leader: str) -> FrozenSet[str]:
        return frozenset(self._followers.get(normalize_leader(leader), ()))

    async def leaders_tracked_for_follower(self, follower_id: str) -> FrozenSet[str]:
        return frozenset(
            leader for leader, followers in list(self._followers.items())
            if follower_id in followers
        )

    async def all_leaders(self) -> FrozenSet[str]:
        return frozenset(leader for leader, followers in list(self._followers.items()) if followers)


class InMemoryCredentialStore:
    """Credential records kept in process memory"""

    def __init__(self):
        self._records: Dict[str, CredentialRecord] = {}

    async def get(self, follower_id: str) -> Optional[CredentialRecord]:
        return self._records.get(str(follower_id))

    async def put(self, record: CredentialRecord) -> None:
        self._records[record.follower_id] = record
