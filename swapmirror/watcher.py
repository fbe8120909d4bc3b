"""
Address Watcher
Observes leader addresses and fans decoded swaps out to their followers

One feed task reads the chain subscription, decodes leader transactions in
the order they are observed, and queues one job per (intent, follower).
A bounded pool of worker tasks executes the jobs; each job is timed out
and fails on its own without touching the feed or other jobs.
The tracked set follows the follower registry, which is re-read while the
feed runs. Stopping lets queued jobs finish for a bounded time and fails
the rest, so every follower still hears back.
"""

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional

from web3 import Web3

from .chain import ChainClient
from .decoder import SwapIntentDecoder
from .errors import (
    CredentialError,
    ExecutionError,
    ExecutionErrorKind,
    PolicyError,
    WatcherError,
    describe_error,
)
from .executor import ReplicationExecutor
from .notifications import NotificationSink, format_attempt, safe_notify
from .registry import CredentialStore, FollowerRegistry
from .types import FollowerProfile, LeaderState, NotASwap, ReplicationAttempt, SwapIntent
from .vault import SecretKeeper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplicationJob:
    """One follower's share of a leader event"""
    intent: SwapIntent
    follower_id: str


class RecentHashes:
    """Bounded set of recently processed transaction hashes (LRU order)"""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._hashes: "OrderedDict[str, None]" = OrderedDict()

    def add(self, tx_hash: str) -> bool:
        """Record a hash; False if it was already present."""
        key = tx_hash.lower()
        if key in self._hashes:
            self._hashes.move_to_end(key)
            return False
        self._hashes[key] = None
        if len(self._hashes) > self.max_size:
            self._hashes.popitem(last=False)
        return True

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)


def _error_kind(error: BaseException) -> str:
    if isinstance(error, ExecutionError):
        return error.kind.name
    if isinstance(error, CredentialError):
        return "CREDENTIAL"
    if isinstance(error, PolicyError):
        return "POLICY"
    return "UNEXPECTED"


class AddressWatcher:
    """
    Watches leader addresses and replicates their swaps.

    Per-leader state: IDLE -> SUBSCRIBED -> DECODING -> DISPATCHING ->
    SUBSCRIBED, and UNSUBSCRIBED once the last follower leaves.
    """

    def __init__(
        self,
        chain: ChainClient,
        decoder: SwapIntentDecoder,
        executor: ReplicationExecutor,
        registry: FollowerRegistry,
        credentials: CredentialStore,
        secrets: SecretKeeper,
        notifier: NotificationSink,
        workers: int = 8,
        queue_size: int = 1000,
        execution_timeout: float = 300.0,
        dedupe_window: int = 1000,
        max_resubscribe_attempts: int = 10,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        history_size: int = 100,
        registry_refresh_blocks: int = 1,
        shutdown_timeout: float = 30.0,
    ):
        """
        Args:
            chain: Chain client providing the block feed
            decoder: Swap decoder for the router
            executor: Replication executor
            registry: Leader -> follower subscriptions
            credentials: Follower wallet records
            secrets: Derives per-follower secrets
            notifier: Follower notification channel
            workers: Number of concurrent replication workers
            queue_size: Maximum queued jobs before the feed waits
            execution_timeout: Seconds allowed per follower replication
            dedupe_window: Processed hashes remembered per leader
            max_resubscribe_attempts: Consecutive feed failures tolerated
                (0 = retry forever)
            backoff_base: First resubscribe delay (seconds)
            backoff_max: Resubscribe delay cap (seconds)
            history_size: Recent attempts kept for stats
            registry_refresh_blocks: Re-read the registry every N processed
                blocks (0 = only at start)
            shutdown_timeout: Seconds stop() waits for queued jobs before
                failing what is left
        """
        if workers < 1:
            raise ValueError("At least one worker is required")

        self.chain = chain
        self.decoder = decoder
        self.executor = executor
        self.registry = registry
        self.credentials = credentials
        self.secrets = secrets
        self.notifier = notifier
        self.worker_count = workers
        self.execution_timeout = execution_timeout
        self.dedupe_window = dedupe_window
        self.max_resubscribe_attempts = max_resubscribe_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.registry_refresh_blocks = registry_refresh_blocks
        self.shutdown_timeout = shutdown_timeout

        self._states: Dict[str, LeaderState] = {}
        self._seen: Dict[str, RecentHashes] = {}
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._workers: List[asyncio.Task] = []
        self._feed_task: Optional[asyncio.Task] = None
        self.is_running = False
        self.last_block: Optional[int] = None

        # Statistics
        self.start_time: Optional[datetime] = None
        self.transactions_seen = 0
        self.swaps_detected = 0
        self.duplicates_skipped = 0
        self.replications_succeeded = 0
        self.replications_failed = 0
        self.resubscriptions = 0
        self.recent_attempts: Deque[ReplicationAttempt] = deque(maxlen=history_size)

    # === Tracking ===

    def state_of(self, leader: str) -> LeaderState:
        return self._states.get(Web3.to_checksum_address(leader), LeaderState.IDLE)

    def tracked_addresses(self) -> List[str]:
        return [
            leader for leader, state in self._states.items()
            if state not in (LeaderState.IDLE, LeaderState.UNSUBSCRIBED)
        ]

    def track(self, leader: str) -> None:
        """Start observing a leader (no-op if already observed)."""
        leader = Web3.to_checksum_address(leader)
        if self._states.get(leader) in (None, LeaderState.IDLE, LeaderState.UNSUBSCRIBED):
            self._states[leader] = LeaderState.SUBSCRIBED
            self._seen.setdefault(leader, RecentHashes(self.dedupe_window))
            logger.info(f"Monitoring leader: {leader}")

    async def untrack(self, leader: str) -> bool:
        """Stop observing a leader once nobody follows it any more."""
        leader = Web3.to_checksum_address(leader)
        if await self.registry.followers_of(leader):
            return False
        if leader in self._states:
            self._states[leader] = LeaderState.UNSUBSCRIBED
            logger.info(f"Stopped monitoring leader: {leader}")
        return True

    async def sync_tracked(self) -> int:
        """
        Match the tracked set to the registry.

        Leaders that gained followers are tracked, tracked leaders whose
        last follower left are dropped. The registry may be written by
        another process sharing the same store.
        """
        leaders = {Web3.to_checksum_address(leader) for leader in await self.registry.all_leaders()}
        for leader in sorted(leaders):
            self.track(leader)
        for leader in self.tracked_addresses():
            if leader not in leaders:
                await self.untrack(leader)
        return len(leaders)

    async def _refresh_safely(self) -> None:
        try:
            await self.sync_tracked()
        except Exception as e:
            logger.warning(f"Could not refresh tracked leaders: {e}")

    # === Lifecycle ===

    async def start(self) -> None:
        """Start workers and the feed task."""
        if self.is_running:
            return
        self.is_running = True
        self.start_time = datetime.now()

        count = await self.sync_tracked()
        logger.info(f"Started monitoring {count} leader addresses")

        self._workers = [
            asyncio.create_task(self._worker(i), name=f"replication-worker-{i}")
            for i in range(self.worker_count)
        ]
        self._feed_task = asyncio.create_task(self._feed_loop(), name="leader-feed")

    async def run(self) -> None:
        """Start and block until the feed stops (WatcherError when retries run out)."""
        await self.start()
        try:
            await self._feed_task
        finally:
            await self.stop()

    async def stop(self) -> None:
        """
        Stop the feed, let queued replications finish, then stop the workers.

        Jobs still queued or running after shutdown_timeout are failed with
        an INTERRUPTED attempt, so every follower still gets a notification.
        """
        if not self.is_running:
            return
        self.is_running = False

        if self._feed_task and not self._feed_task.done():
            self._feed_task.cancel()
            await asyncio.gather(self._feed_task, return_exceptions=True)

        if self.shutdown_timeout > 0:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Replications still pending after {self.shutdown_timeout:.0f}s")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._abandon(job, "stopped before it started")
            finally:
                self._queue.task_done()

        for leader in self._states:
            self._states[leader] = LeaderState.UNSUBSCRIBED
        logger.info("Monitoring stopped")

    async def drain(self) -> None:
        """Wait until every queued replication job has finished."""
        await self._queue.join()

    # === Feed ===

    def _resume_block(self) -> Optional[int]:
        return self.last_block + 1 if self.last_block is not None else None

    async def _feed_loop(self) -> None:
        failures = 0
        since_refresh = 0
        while self.is_running:
            try:
                async for activity in self.chain.subscribe(self.tracked_addresses, self._resume_block()):
                    for tx in activity.transactions:
                        await self._handle_safely(tx)
                    self.last_block = activity.block_number
                    failures = 0

                    since_refresh += 1
                    if self.registry_refresh_blocks and since_refresh >= self.registry_refresh_blocks:
                        since_refresh = 0
                        await self._refresh_safely()
            except WatcherError as e:
                failures += 1
                if self.max_resubscribe_attempts and failures > self.max_resubscribe_attempts:
                    logger.error(f"Feed failed {failures} times in a row, giving up: {e}")
                    raise WatcherError(f"Feed unavailable after {failures} attempts") from e

                delay = min(self.backoff_base * 2 ** (failures - 1), self.backoff_max)
                self.resubscriptions += 1
                logger.warning(f"Feed dropped ({e}); resubscribing in {delay:.1f}s")
                await asyncio.sleep(delay)

    async def _handle_safely(self, tx: Mapping[str, Any]) -> None:
        try:
            await self.handle_transaction(tx)
        except Exception as e:
            # A bad transaction must not stop observation of the next one
            logger.exception(f"Error handling transaction {tx.get('hash')}: {e}")

    async def handle_transaction(self, tx: Mapping[str, Any]) -> Optional[SwapIntent]:
        """
        Process one transaction from a tracked leader.

        Returns:
            The dispatched intent, or None when the transaction was ignored
            (untracked sender, duplicate delivery, not a swap)
        """
        sender = tx.get("from")
        if not sender:
            return None
        leader = Web3.to_checksum_address(sender)
        if self._states.get(leader) in (None, LeaderState.IDLE, LeaderState.UNSUBSCRIBED):
            return None

        raw_hash = tx.get("hash")
        tx_hash = Web3.to_hex(raw_hash) if isinstance(raw_hash, (bytes, bytearray)) else str(raw_hash)
        self.transactions_seen += 1

        # A hash is only remembered once it is fully handled, so a delivery
        # that failed half way is processed again when redelivered
        seen = self._seen.setdefault(leader, RecentHashes(self.dedupe_window))
        if tx_hash in seen:
            self.duplicates_skipped += 1
            logger.debug(f"Skipping duplicate delivery of {tx_hash}")
            return None

        logger.info(f"New transaction from {leader}: {tx_hash}")
        self._states[leader] = LeaderState.DECODING
        try:
            if tx.get("input") is None and tx.get("data") is None:
                fetched = await self.chain.get_transaction(tx_hash)
                tx = fetched if fetched is not None else tx
            result = self.decoder.decode(tx)

            if isinstance(result, NotASwap):
                logger.debug(f"{tx_hash} ignored: {result.reason}")
                seen.add(tx_hash)
                return None

            self.swaps_detected += 1
            self._states[leader] = LeaderState.DISPATCHING
            followers = await self.registry.followers_of(leader)
            logger.info(
                f"Swap {result.method} {result.amount_in} {result.source_token} -> "
                f"{result.destination_token}; dispatching to {len(followers)} followers"
            )
            for follower_id in sorted(followers):
                await self._queue.put(ReplicationJob(result, follower_id))
            seen.add(tx_hash)
            return result
        finally:
            if self._states.get(leader) in (LeaderState.DECODING, LeaderState.DISPATCHING):
                self._states[leader] = LeaderState.SUBSCRIBED

    # === Workers ===

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.replicate(job)
            except Exception as e:
                logger.exception(f"Worker {index} failed on job {job}: {e}")
            finally:
                self._queue.task_done()

    async def replicate(self, job: ReplicationJob) -> ReplicationAttempt:
        """Run one follower replication and report its outcome to that follower."""
        intent, follower_id = job.intent, job.follower_id
        try:
            record = await self.credentials.get(follower_id)
            if record is None:
                raise CredentialError("No wallet set up for this follower")
            profile = FollowerProfile.from_record(record, self.secrets.secret_for(follower_id))

            tx_hash = await asyncio.wait_for(
                self.executor.execute(intent, profile),
                timeout=self.execution_timeout,
            )
            attempt = ReplicationAttempt.succeeded(follower_id, intent, tx_hash)
            self.replications_succeeded += 1
            logger.info(f"Replicated trade for follower {follower_id}: {tx_hash}")

        except asyncio.CancelledError:
            # Worker cancelled by stop() while this job was running
            await self._abandon(job, "a transaction may still be pending, check your wallet")
            raise

        except asyncio.TimeoutError:
            error = ExecutionError(ExecutionErrorKind.TIMEOUT, f"no result within {self.execution_timeout:.0f}s")
            attempt = ReplicationAttempt.failed(follower_id, intent, error.kind.name, describe_error(error))
            self.replications_failed += 1
            logger.error(f"Replication for {follower_id} of {intent.tx_hash} timed out")

        except Exception as e:
            attempt = ReplicationAttempt.failed(follower_id, intent, _error_kind(e), describe_error(e))
            self.replications_failed += 1
            if attempt.error_kind == "UNEXPECTED":
                logger.exception(f"Error replicating trade for follower {follower_id}: {e}")
            else:
                logger.warning(f"Replication for {follower_id} of {intent.tx_hash} failed: {e}")

        self.recent_attempts.append(attempt)
        await safe_notify(self.notifier, follower_id, format_attempt(attempt))
        return attempt

    async def _abandon(self, job: ReplicationJob, detail: str) -> ReplicationAttempt:
        """Fail a job cut short by shutdown and tell its follower."""
        error = ExecutionError(ExecutionErrorKind.INTERRUPTED, detail)
        attempt = ReplicationAttempt.failed(job.follower_id, job.intent, error.kind.name, describe_error(error))
        self.replications_failed += 1
        logger.warning(f"Replication for {job.follower_id} of {job.intent.tx_hash} interrupted: {detail}")

        self.recent_attempts.append(attempt)
        await safe_notify(self.notifier, job.follower_id, format_attempt(attempt))
        return attempt

    def get_stats(self) -> Dict[str, Any]:
        """Get monitoring statistics"""
        return {
            "tracked_leaders": len(self.tracked_addresses()),
            "last_block": self.last_block,
            "transactions_seen": self.transactions_seen,
            "swaps_detected": self.swaps_detected,
            "duplicates_skipped": self.duplicates_skipped,
            "replications_succeeded": self.replications_succeeded,
            "replications_failed": self.replications_failed,
            "resubscriptions": self.resubscriptions,
            "queued_jobs": self._queue.qsize(),
            "is_running": self.is_running,
            "start_time": self.start_time.isoformat() if self.start_time else None,
        }
