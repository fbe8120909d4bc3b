"""
Replication Executor
Submits a follower's scaled copy of a leader swap
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

from eth_abi import decode
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .abi import (
    ERC20_APPROVE,
    GET_AMOUNTS_OUT,
    SWAP_EXACT_ETH_FOR_TOKENS,
    SWAP_EXACT_TOKENS_FOR_ETH,
    SWAP_EXACT_TOKENS_FOR_TOKENS,
)
from .chain import ChainClient
from .errors import CredentialError, ExecutionError, ExecutionErrorKind
from .scaler import DEFAULT_POLICY, ScalingPolicy, scale
from .types import FollowerProfile, SwapIntent
from .vault import CredentialVault

logger = logging.getLogger(__name__)


# === Output protection policies ===

class OutputProtection(Protocol):
    """Decides the minimum output a replica swap accepts"""

    async def min_amount_out(self, chain: ChainClient, router: str, intent: SwapIntent,
                             amount_in: int) -> int:
        ...


@dataclass(frozen=True)
class SlippageTolerance:
    """Quote the router and accept at most `bps` below the quote."""
    bps: int = 50

    def __post_init__(self):
        if not 0 <= self.bps < 10_000:
            raise ValueError(f"Slippage tolerance must be in [0, 10000) bps, got {self.bps}")

    async def min_amount_out(self, chain: ChainClient, router: str, intent: SwapIntent,
                             amount_in: int) -> int:
        data = GET_AMOUNTS_OUT.encode_call(amount_in, list(intent.path))
        try:
            amounts = decode(["uint256[]"], await chain.call(router, data))[0]
        except Exception as e:
            raise ExecutionError(ExecutionErrorKind.SUBMISSION_REJECTED, f"router quote failed: {e}") from e
        quoted = amounts[-1]
        return quoted * (10_000 - self.bps) // 10_000


@dataclass(frozen=True)
class MatchLeaderLimit:
    """Scale the leader's own minimum output by the same ratio as the input."""

    async def min_amount_out(self, chain: ChainClient, router: str, intent: SwapIntent,
                             amount_in: int) -> int:
        return intent.amount_out_min * amount_in // intent.amount_in


@dataclass(frozen=True)
class AcceptAnyOutput:
    """Explicitly accept any output amount (no price protection)."""

    async def min_amount_out(self, chain: ChainClient, router: str, intent: SwapIntent,
                             amount_in: int) -> int:
        return 0


class ExecutionLedger:
    """Bounded record of (source tx, follower) pairs already claimed"""

    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._entries: "OrderedDict[Tuple[str, str], float]" = OrderedDict()

    def claim(self, tx_hash: str, follower_id: str) -> bool:
        """Return False if the pair was already claimed."""
        key = (tx_hash.lower(), str(follower_id))
        if key in self._entries:
            return False
        self._entries[key] = time.time()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return True

    def release(self, tx_hash: str, follower_id: str) -> None:
        self._entries.pop((tx_hash.lower(), str(follower_id)), None)

    def __len__(self) -> int:
        return len(self._entries)


class ReplicationExecutor:
    """
    Executes one follower's replica of a SwapIntent.

    Pipeline: claim -> decrypt -> scale -> balance -> allowance -> quote ->
    sign -> broadcast -> confirm. Each failure surfaces as a distinct error.
    """

    def __init__(
        self,
        chain: ChainClient,
        vault: CredentialVault,
        router_address: str,
        policy: ScalingPolicy = DEFAULT_POLICY,
        output_protection: OutputProtection = SlippageTolerance(),
        deadline_window: int = 20 * 60,
        receipt_timeout: float = 120.0,
        max_broadcast_retries: int = 3,
        retry_delay: float = 2.0,
        ledger: Optional[ExecutionLedger] = None,
    ):
        """
        Args:
            chain: Chain client
            vault: Credential vault used to unlock follower keys
            router_address: Router that executes the swaps
            policy: Sizing policy applied to the leader's input amount
            output_protection: Minimum-output policy
            deadline_window: Seconds from submission until the swap expires
            receipt_timeout: Seconds to wait for each receipt
            max_broadcast_retries: Extra attempts for timed out broadcasts
            retry_delay: Base backoff between broadcast attempts (seconds)
            ledger: Shared duplicate-execution ledger
        """
        self.chain = chain
        self.vault = vault
        self.router_address = Web3.to_checksum_address(router_address)
        self.policy = policy
        self.output_protection = output_protection
        self.deadline_window = deadline_window
        self.receipt_timeout = receipt_timeout
        self.max_broadcast_retries = max_broadcast_retries
        self.retry_delay = retry_delay
        self.ledger = ledger or ExecutionLedger()

        self._wallet_locks: Dict[str, asyncio.Lock] = {}

    def _wallet_lock(self, wallet: str) -> asyncio.Lock:
        key = wallet.lower()
        if key not in self._wallet_locks:
            self._wallet_locks[key] = asyncio.Lock()
        return self._wallet_locks[key]

    async def execute(self, intent: SwapIntent, follower: FollowerProfile) -> str:
        """
        Replicate a leader swap for one follower.

        Args:
            intent: Decoded leader swap
            follower: Follower wallet, encrypted key and secret

        Returns:
            Hash of the confirmed replica swap

        Raises:
            CredentialError, PolicyError, ExecutionError
        """
        if not self.ledger.claim(intent.tx_hash, follower.follower_id):
            raise ExecutionError(ExecutionErrorKind.DUPLICATE, intent.tx_hash)

        try:
            return await self._execute(intent, follower)
        except CredentialError:
            # Nothing was sent; a corrected credential may retry the same trade
            self.ledger.release(intent.tx_hash, follower.follower_id)
            raise

    async def _execute(self, intent: SwapIntent, follower: FollowerProfile) -> str:
        account = await asyncio.to_thread(self.vault.load_account, follower)
        amount_in = scale(intent.amount_in, self.policy)

        logger.info(
            f"Replicating {intent.tx_hash[:10]} for {follower.follower_id}: "
            f"{amount_in} of {intent.source_token} -> {intent.destination_token}"
        )

        async with self._wallet_lock(account.address):
            await self._check_balance(intent, account.address, amount_in)
            if not intent.is_native_in:
                await self._ensure_allowance(account, intent.source_token, amount_in)

            min_out = await self.output_protection.min_amount_out(
                self.chain, self.router_address, intent, amount_in
            )
            swap_tx = self._build_swap(intent, account.address, amount_in, min_out)
            tx_hash = await self._submit(account, swap_tx)

        logger.info(f"Replica swap confirmed for {follower.follower_id}: {tx_hash}")
        return tx_hash

    async def _check_balance(self, intent: SwapIntent, wallet: str, amount_in: int) -> None:
        if intent.is_native_in:
            balance = await self.chain.get_balance(wallet)
        else:
            balance = await self.chain.get_token_balance(intent.source_token, wallet)

        if balance < amount_in:
            raise ExecutionError(
                ExecutionErrorKind.INSUFFICIENT_BALANCE,
                f"have {balance}, need {amount_in}",
            )

    async def _ensure_allowance(self, account: LocalAccount, token: str, amount_in: int) -> None:
        try:
            allowance = await self.chain.get_allowance(token, account.address, self.router_address)
        except Exception as e:
            raise ExecutionError(ExecutionErrorKind.ALLOWANCE_FAILED, f"allowance query failed: {e}") from e

        if allowance >= amount_in:
            return

        logger.info(f"Approving router for {amount_in} of {token} from {account.address}")
        approve_tx = {
            "to": token,
            "data": ERC20_APPROVE.encode_call(self.router_address, amount_in),
            "value": 0,
        }
        try:
            await self._submit(account, approve_tx)
        except ExecutionError as e:
            raise ExecutionError(ExecutionErrorKind.ALLOWANCE_FAILED, str(e), tx_hash=e.tx_hash) from e

    def _build_swap(self, intent: SwapIntent, recipient: str, amount_in: int, min_out: int) -> Dict[str, Any]:
        # Fresh deadline per follower; the leader's deadline is stale by now
        deadline = int(time.time()) + self.deadline_window
        path = list(intent.path)

        if intent.is_native_in:
            data = SWAP_EXACT_ETH_FOR_TOKENS.encode_call(min_out, path, recipient, deadline)
            value = amount_in
        elif intent.is_native_out:
            data = SWAP_EXACT_TOKENS_FOR_ETH.encode_call(amount_in, min_out, path, recipient, deadline)
            value = 0
        else:
            data = SWAP_EXACT_TOKENS_FOR_TOKENS.encode_call(amount_in, min_out, path, recipient, deadline)
            value = 0

        return {"to": self.router_address, "data": data, "value": value}

    def _sign(self, account: LocalAccount, tx: Dict[str, Any]) -> Tuple[bytes, str]:
        try:
            signed = account.sign_transaction(tx)
        except Exception as e:
            raise ExecutionError(ExecutionErrorKind.SIGNING_FAILED, type(e).__name__) from e
        return bytes(signed.raw_transaction), Web3.to_hex(signed.hash)

    async def _submit(self, account: LocalAccount, tx: Dict[str, Any]) -> str:
        """Prepare, sign, broadcast (with bounded retries) and confirm."""
        prepared = await self.chain.prepare_transaction(account.address, tx)
        raw, tx_hash = self._sign(account, prepared)
        tx_hash = await self._broadcast(raw, tx_hash)

        receipt = await self.chain.wait_for_receipt(tx_hash, self.receipt_timeout)
        if receipt.get("status") != 1:
            raise ExecutionError(ExecutionErrorKind.SUBMISSION_REJECTED, "transaction reverted", tx_hash=tx_hash)
        return tx_hash

    async def _broadcast(self, raw: bytes, tx_hash: str) -> str:
        attempt = 0
        while True:
            try:
                return await self.chain.broadcast(raw, tx_hash)
            except ExecutionError as e:
                if not e.retryable or attempt >= self.max_broadcast_retries:
                    raise
                attempt += 1
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(f"Broadcast of {tx_hash} timed out, retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)


class DryRunExecutor(ReplicationExecutor):
    """
    Dry run executor for testing without real trades

    Runs the full pipeline (credentials, sizing, balance checks) but never
    broadcasts anything.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        logger.info("Running in DRY RUN mode - no real trades will be executed")

    async def _ensure_allowance(self, account: LocalAccount, token: str, amount_in: int) -> None:
        allowance = await self.chain.get_allowance(token, account.address, self.router_address)
        if allowance < amount_in:
            logger.info(f"[DRY RUN] Would approve {amount_in} of {token} for {account.address}")

    async def _submit(self, account: LocalAccount, tx: Dict[str, Any]) -> str:
        logger.info(f"[DRY RUN] Would send {len(tx['data'])} bytes to {tx['to']} from {account.address}")
        return f"0x_dryrun_{int(time.time() * 1000)}"
