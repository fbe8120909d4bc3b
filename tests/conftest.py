"""
Shared fixtures: a scripted chain client, fast vault and follower factory.
"""

import asyncio
import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import encode
from eth_account import Account
from web3 import Web3

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from swapmirror.abi import GET_AMOUNTS_OUT, SWAP_EXACT_ETH_FOR_TOKENS, SWAP_EXACT_TOKENS_FOR_TOKENS
from swapmirror.chain import BlockActivity
from swapmirror.errors import ExecutionError, ExecutionErrorKind, WatcherError
from swapmirror.registry import InMemoryCredentialStore, InMemoryFollowerRegistry
from swapmirror.types import CredentialRecord, FollowerProfile
from swapmirror.vault import CredentialVault, KdfParams, SecretKeeper

ROUTER = Web3.to_checksum_address("0x7a250d5630b4cf539739df2c5dacb4c659f2488d")
TOKEN_IN = Web3.to_checksum_address("0x" + "11" * 20)
TOKEN_MID = Web3.to_checksum_address("0x" + "22" * 20)
TOKEN_OUT = Web3.to_checksum_address("0x" + "33" * 20)
WETH = Web3.to_checksum_address("0x" + "44" * 20)
LEADER = Web3.to_checksum_address("0x" + "aa" * 20)
OTHER = Web3.to_checksum_address("0x" + "bb" * 20)

UNIT = 10 ** 18


class FakeChain:
    """Scripted ChainClient: balances, allowances, quotes and a recorded send log."""

    def __init__(self):
        self.native_balances: Dict[str, int] = {}
        self.token_balances: Dict[tuple, int] = {}
        self.allowances: Dict[tuple, int] = {}
        self.quote_multiplier = 2
        self.prepared: List[Dict[str, Any]] = []
        self.sent: List[Dict[str, Any]] = []
        self.broadcast_failures: List[ExecutionError] = []
        self.reject_to: set = set()
        self.receipt_status = 1
        self.receipt_timeout = False
        self.balance_queries = 0
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.lookup_failures: List[Exception] = []
        self.feed: List[Any] = []
        self.subscribe_calls = 0
        self._nonces = itertools.count()

    # Setup helpers
    def fund(self, wallet: str, token: Optional[str] = None, amount: int = 0, allowance: int = 0):
        if token is None:
            self.native_balances[wallet.lower()] = amount
        else:
            self.token_balances[(token.lower(), wallet.lower())] = amount
            self.allowances[(token.lower(), wallet.lower(), ROUTER.lower())] = allowance

    # ChainClient
    async def current_block(self) -> int:
        return 100

    async def subscribe(self, addresses, from_block=None):
        self.subscribe_calls += 1
        while True:
            if not self.feed:
                await asyncio.sleep(0.005)
                continue
            item = self.feed.pop(0)
            if isinstance(item, Exception):
                raise item
            yield item

    async def get_transaction(self, tx_hash):
        if self.lookup_failures:
            raise self.lookup_failures.pop(0)
        return self.transactions.get(tx_hash)

    async def get_balance(self, address):
        self.balance_queries += 1
        return self.native_balances.get(address.lower(), 0)

    async def get_token_balance(self, token, owner):
        self.balance_queries += 1
        return self.token_balances.get((token.lower(), owner.lower()), 0)

    async def get_allowance(self, token, owner, spender):
        return self.allowances.get((token.lower(), owner.lower(), spender.lower()), 0)

    async def call(self, to, data):
        assert data[:4] == GET_AMOUNTS_OUT.selector
        args = GET_AMOUNTS_OUT.decode_args(data)
        amount_in = args["amountIn"]
        amounts = [amount_in] * (len(args["path"]) - 1) + [amount_in * self.quote_multiplier]
        return encode(["uint256[]"], [amounts])

    async def prepare_transaction(self, sender, tx):
        if tx["to"].lower() in self.reject_to:
            raise ExecutionError(ExecutionErrorKind.SUBMISSION_REJECTED, "execution reverted")
        prepared = {
            "from": sender,
            "to": tx["to"],
            "data": tx["data"],
            "value": tx.get("value", 0),
            "nonce": next(self._nonces),
            "gas": 200_000,
            "gasPrice": 10 ** 9,
            "chainId": 17000,
        }
        self.prepared.append(prepared)
        return dict(prepared)

    async def broadcast(self, raw_transaction, tx_hash):
        if self.broadcast_failures:
            raise self.broadcast_failures.pop(0)
        decoded = Account.recover_transaction(raw_transaction)
        self.sent.append({"raw": raw_transaction, "hash": tx_hash, "sender": decoded})
        return tx_hash

    async def wait_for_receipt(self, tx_hash, timeout):
        if self.receipt_timeout:
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, "no receipt", tx_hash=tx_hash)
        return {"status": self.receipt_status, "transactionHash": tx_hash}


class RecordingSink:
    """NotificationSink that keeps every message"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[tuple] = []

    async def notify(self, recipient_id, message):
        if self.fail:
            raise RuntimeError("chat API down")
        self.messages.append((recipient_id, message))

    def for_recipient(self, recipient_id):
        return [message for rid, message in self.messages if rid == recipient_id]


@pytest.fixture
def vault():
    """Vault with the cheapest argon2 cost so tests stay fast."""
    return CredentialVault(KdfParams(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def keeper():
    return SecretKeeper("test-master-secret")


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def registry():
    return InMemoryFollowerRegistry()


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def make_follower(vault, keeper, credential_store):
    """Create a follower with a real key, stored in the credential store."""

    def _make(follower_id: str, corrupt: bool = False):
        account = Account.create()
        encrypted = vault.encrypt(bytes(account.key), keeper.secret_for(follower_id))
        if corrupt:
            # Flip the last ciphertext character so the GCM tag no longer matches
            last = encrypted[-1]
            encrypted = encrypted[:-1] + ("A" if last != "A" else "B")
        record = CredentialRecord(follower_id, account.address, encrypted)
        credential_store._records[follower_id] = record
        profile = FollowerProfile.from_record(record, keeper.secret_for(follower_id))
        return account, profile

    return _make


def tokens_swap_tx(amount_in: int, path=None, leader: str = LEADER, tx_hash: str = "0x" + "01" * 32,
                   amount_out_min: int = 0, deadline: int = 1_700_000_000, to: str = ROUTER) -> Dict[str, Any]:
    """Leader transaction calling swapExactTokensForTokens."""
    path = path or [TOKEN_IN, TOKEN_OUT]
    data = SWAP_EXACT_TOKENS_FOR_TOKENS.encode_call(amount_in, amount_out_min, path, leader, deadline)
    return {
        "hash": tx_hash,
        "from": leader,
        "to": to,
        "value": 0,
        "input": "0x" + data.hex(),
        "blockNumber": 42,
    }


def eth_swap_tx(value: int, path=None, leader: str = LEADER, tx_hash: str = "0x" + "02" * 32,
                deadline: int = 1_700_000_000) -> Dict[str, Any]:
    """Leader transaction calling swapExactETHForTokens."""
    path = path or [WETH, TOKEN_OUT]
    data = SWAP_EXACT_ETH_FOR_TOKENS.encode_call(0, path, leader, deadline)
    return {
        "hash": tx_hash,
        "from": leader,
        "to": ROUTER,
        "value": value,
        "input": data,
        "blockNumber": 43,
    }


def feed_block(number: int, *txs) -> BlockActivity:
    return BlockActivity(block_number=number, transactions=list(txs))


def feed_drop(message: str = "connection reset") -> WatcherError:
    return WatcherError(message)
