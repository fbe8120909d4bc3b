"""
Tests for the follower registry and credential store implementations
"""

import sqlite3

import pytest

from conftest import LEADER, OTHER
from swapmirror.registry import InMemoryCredentialStore, InMemoryFollowerRegistry, normalize_leader
from swapmirror.storage import SqliteStore
from swapmirror.types import CredentialRecord


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each registry test runs against both implementations."""
    if request.param == "memory":
        return InMemoryFollowerRegistry()
    return SqliteStore(str(tmp_path / "db" / "test.sqlite"))


class TestFollowerRegistry:
    """Registry semantics shared by both implementations."""

    @pytest.mark.asyncio
    async def test_pairs_are_unique(self, store):
        assert await store.add_follower(LEADER, "f1")
        assert not await store.add_follower(LEADER.lower(), "f1")
        assert await store.followers_of(LEADER) == frozenset({"f1"})

    @pytest.mark.asyncio
    async def test_followers_and_leaders(self, store):
        await store.add_follower(LEADER, "f1")
        await store.add_follower(LEADER, "f2")
        await store.add_follower(OTHER, "f1")

        assert await store.followers_of(LEADER) == frozenset({"f1", "f2"})
        assert await store.leaders_tracked_for_follower("f1") == frozenset({LEADER, OTHER})
        assert await store.all_leaders() == frozenset({LEADER, OTHER})

    @pytest.mark.asyncio
    async def test_remove(self, store):
        await store.add_follower(LEADER, "f1")
        assert await store.remove_follower(LEADER, "f1")
        assert not await store.remove_follower(LEADER, "f1")
        assert await store.followers_of(LEADER) == frozenset()
        assert await store.all_leaders() == frozenset()

    @pytest.mark.asyncio
    async def test_invalid_leader_rejected(self, store):
        with pytest.raises(ValueError):
            await store.add_follower("not-an-address", "f1")

    @pytest.mark.asyncio
    async def test_snapshot_unaffected_by_later_changes(self, store):
        await store.add_follower(LEADER, "f1")
        snapshot = await store.followers_of(LEADER)
        await store.add_follower(LEADER, "f2")
        assert snapshot == frozenset({"f1"})


class TestCredentialStores:
    """Credential persistence."""

    @pytest.mark.asyncio
    async def test_in_memory_put_get(self):
        store = InMemoryCredentialStore()
        record = CredentialRecord("f1", LEADER, "v1.token")
        await store.put(record)
        assert await store.get("f1") == record
        assert await store.get("f2") is None

    @pytest.mark.asyncio
    async def test_sqlite_upsert_and_reopen(self, tmp_path):
        path = str(tmp_path / "store.sqlite")
        store = SqliteStore(path)
        await store.put(CredentialRecord("f1", LEADER, "old"))
        await store.put(CredentialRecord("f1", OTHER, "new"))
        await store.add_follower(LEADER, "f1")

        reopened = SqliteStore(path)
        assert await reopened.get("f1") == CredentialRecord("f1", OTHER, "new")
        assert await reopened.followers_of(LEADER) == frozenset({"f1"})

    def test_schema_version_mismatch(self, tmp_path):
        path = tmp_path / "store.sqlite"
        SqliteStore(str(path))
        with sqlite3.connect(path) as conn:
            conn.execute("UPDATE metadata SET value = '99' WHERE key = 'schema_version'")

        with pytest.raises(RuntimeError, match="Schema version mismatch"):
            SqliteStore(str(path))

    def test_no_secret_column(self, tmp_path):
        path = tmp_path / "store.sqlite"
        SqliteStore(str(path))
        with sqlite3.connect(path) as conn:
            columns = [row[1] for row in conn.execute("PRAGMA table_info(users)")]
        assert columns == ["id", "follower_id", "wallet_address", "encrypted_private_key"]


class TestNormalizeLeader:
    """Tests for normalize_leader."""

    def test_checksums(self):
        assert normalize_leader(LEADER.lower()) == LEADER

    @pytest.mark.parametrize("value", ["", "0x123", "hello"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            normalize_leader(value)
