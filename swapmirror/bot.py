"""
Copy Trading Bot
Wires configuration, storage, vault, chain client, executor and watcher
"""

import logging
from typing import Any, Dict, FrozenSet, Optional

from .chain import ChainClient, Web3ChainClient
from .config import ReplicatorConfig
from .decoder import SwapIntentDecoder
from .executor import (
    AcceptAnyOutput,
    DryRunExecutor,
    MatchLeaderLimit,
    OutputProtection,
    ReplicationExecutor,
    SlippageTolerance,
)
from .notifications import NotificationSink, build_notifier, format_address, safe_notify
from .registry import normalize_leader
from .scaler import CappedPolicy, FixedFractionPolicy, ScalingPolicy
from .storage import SqliteStore
from .types import CredentialRecord
from .vault import CredentialVault, SecretKeeper, provision_wallet
from .watcher import AddressWatcher

logger = logging.getLogger(__name__)


def build_policy(config: ReplicatorConfig) -> ScalingPolicy:
    """Sizing policy from config: fixed fraction, optionally capped."""
    policy: ScalingPolicy = FixedFractionPolicy(config.copy_bps)
    if config.max_replica_amount > 0:
        policy = CappedPolicy(policy, config.max_replica_amount)
    return policy


def build_output_protection(config: ReplicatorConfig) -> OutputProtection:
    """Minimum-output policy from config."""
    if config.output_protection == "slippage":
        return SlippageTolerance(config.max_slippage_bps)
    if config.output_protection == "leader":
        return MatchLeaderLimit()
    if config.output_protection == "none":
        logger.warning("Output protection disabled: replica swaps accept any output amount")
        return AcceptAnyOutput()
    raise ValueError(f"Unknown output protection: {config.output_protection}")


class CopyTradingBot:
    """
    Main copy trading bot that orchestrates:
    - Follower onboarding (wallet provisioning, follow / unfollow)
    - Leader monitoring and swap decoding
    - Per-follower replication and notifications
    """

    def __init__(
        self,
        config: ReplicatorConfig,
        live_mode: bool = False,
        chain: Optional[ChainClient] = None,
        store: Optional[SqliteStore] = None,
        notifier: Optional[NotificationSink] = None,
        vault: Optional[CredentialVault] = None,
    ):
        problems = config.validate()
        if problems:
            raise ValueError("Invalid configuration: " + "; ".join(problems))

        self.config = config
        self.live_mode = live_mode

        self.store = store or SqliteStore(config.db_path)
        self.vault = vault or CredentialVault()
        self.secrets = SecretKeeper(config.master_secret)
        self.notifier = notifier or build_notifier(config.telegram_bot_token)
        self.chain = chain or Web3ChainClient(
            rpc_urls=config.rpc_urls,
            poll_interval=config.poll_interval,
            confirmation_blocks=config.confirmation_blocks,
            lookback_blocks=config.lookback_blocks,
            gas_price_multiplier=config.gas_price_multiplier,
            gas_limit_multiplier=config.gas_limit_multiplier,
        )

        executor_cls = ReplicationExecutor if live_mode else DryRunExecutor
        self.executor = executor_cls(
            chain=self.chain,
            vault=self.vault,
            router_address=config.router_address,
            policy=build_policy(config),
            output_protection=build_output_protection(config),
            deadline_window=config.deadline_window,
            receipt_timeout=config.receipt_timeout,
            max_broadcast_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )
        if live_mode:
            logger.warning("LIVE MODE - Real trades will be executed!")

        self.watcher = AddressWatcher(
            chain=self.chain,
            decoder=SwapIntentDecoder(config.router_address),
            executor=self.executor,
            registry=self.store,
            credentials=self.store,
            secrets=self.secrets,
            notifier=self.notifier,
            workers=config.workers,
            queue_size=config.queue_size,
            execution_timeout=config.execution_timeout,
            dedupe_window=config.dedupe_window,
            max_resubscribe_attempts=config.max_resubscribe_attempts,
            backoff_base=config.resubscribe_backoff,
            backoff_max=config.resubscribe_backoff_max,
            registry_refresh_blocks=config.registry_refresh_blocks,
            shutdown_timeout=config.shutdown_timeout,
        )

    # === Onboarding ===

    async def provision(self, follower_id: str) -> CredentialRecord:
        """Create a wallet for a follower, or return the existing one."""
        existing = await self.store.get(follower_id)
        if existing is not None:
            logger.info(f"Follower {follower_id} already has wallet {existing.wallet_address}")
            return existing

        record = provision_wallet(follower_id, self.vault, self.secrets)
        await self.store.put(record)
        await safe_notify(
            self.notifier, follower_id,
            f"🔔 Wallet setup complete! Your address is: {format_address(record.wallet_address)}",
        )
        return record

    async def follow(self, follower_id: str, leader: str) -> bool:
        """Subscribe a follower to a leader. Returns False if already subscribed."""
        leader = normalize_leader(leader)
        if await self.store.get(follower_id) is None:
            raise ValueError(f"Follower {follower_id} has no wallet; provision one first")

        added = await self.store.add_follower(leader, follower_id)
        self.watcher.track(leader)
        if added:
            await safe_notify(
                self.notifier, follower_id,
                f"🔔 You are now copying trades from {format_address(leader)}",
            )
        return added

    async def unfollow(self, follower_id: str, leader: str) -> bool:
        """Unsubscribe; the leader stops being watched when nobody follows it."""
        leader = normalize_leader(leader)
        removed = await self.store.remove_follower(leader, follower_id)
        if removed:
            await self.watcher.untrack(leader)
        return removed

    async def copied_addresses(self, follower_id: str) -> FrozenSet[str]:
        return await self.store.leaders_tracked_for_follower(follower_id)

    # === Running ===

    async def run(self) -> None:
        """Connect and watch until stopped or the feed gives up."""
        if isinstance(self.chain, Web3ChainClient) and not await self.chain.connect():
            raise ConnectionError("Failed to connect to any RPC endpoint")

        logger.info("=" * 60)
        logger.info("SWAP COPY TRADING BOT")
        logger.info("=" * 60)
        logger.info(f"Router: {self.config.router_address}")
        logger.info(f"Copy fraction: {self.config.copy_bps / 100:.2f}%")
        logger.info(f"Output protection: {self.config.output_protection}")
        logger.info(f"Workers: {self.config.workers}")
        logger.info(f"Mode: {'LIVE' if self.live_mode else 'DRY RUN'}")
        logger.info("=" * 60)

        try:
            await self.watcher.run()
        finally:
            await self.close()

    async def close(self) -> None:
        await self.watcher.stop()
        aclose = getattr(self.notifier, "aclose", None)
        if aclose is not None:
            await aclose()

    def get_status(self) -> Dict[str, Any]:
        """Get current bot status"""
        return {
            "live_mode": self.live_mode,
            "router": self.config.router_address,
            "copy_bps": self.config.copy_bps,
            "db_path": self.config.db_path,
            "watcher": self.watcher.get_stats(),
        }
