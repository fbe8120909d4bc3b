"""
Runtime configuration for the replication engine.

Defaults come from settings.py; environment variables override them.

SECURITY WARNING:
- SWAPMIRROR_MASTER_SECRET unlocks every follower key; keep it out of the
  database and out of git
- Use environment variables or a .env file
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from . import settings


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ReplicatorConfig:
    """Configuration for the copy trading engine."""

    # === Chain ===
    rpc_urls: List[str] = field(default_factory=lambda: list(settings.RPC_URLS))
    router_address: str = settings.ROUTER_ADDRESS
    poll_interval: float = settings.POLL_INTERVAL
    lookback_blocks: int = settings.LOOKBACK_BLOCKS
    confirmation_blocks: int = settings.CONFIRMATION_BLOCKS

    # === Sizing / protection ===
    copy_bps: int = settings.COPY_BPS
    max_replica_amount: int = settings.MAX_REPLICA_AMOUNT
    output_protection: str = settings.OUTPUT_PROTECTION
    max_slippage_bps: int = settings.MAX_SLIPPAGE_BPS

    # === Execution ===
    workers: int = settings.WORKERS
    queue_size: int = settings.QUEUE_SIZE
    deadline_window: int = settings.DEADLINE_WINDOW
    receipt_timeout: float = settings.RECEIPT_TIMEOUT
    execution_timeout: float = settings.EXECUTION_TIMEOUT
    gas_price_multiplier: float = settings.GAS_PRICE_MULTIPLIER
    gas_limit_multiplier: float = settings.GAS_LIMIT_MULTIPLIER
    max_retries: int = settings.MAX_RETRIES
    retry_delay: float = settings.RETRY_DELAY
    shutdown_timeout: float = settings.SHUTDOWN_TIMEOUT

    # === Watcher ===
    dedupe_window: int = settings.DEDUPE_WINDOW
    max_resubscribe_attempts: int = settings.MAX_RESUBSCRIBE_ATTEMPTS
    resubscribe_backoff: float = settings.RESUBSCRIBE_BACKOFF
    resubscribe_backoff_max: float = settings.RESUBSCRIBE_BACKOFF_MAX
    registry_refresh_blocks: int = settings.REGISTRY_REFRESH_BLOCKS

    # === Storage / secrets / notifications ===
    db_path: str = settings.DB_PATH
    master_secret: Optional[str] = field(default=None, repr=False)
    telegram_bot_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "ReplicatorConfig":
        """Load config with environment variable overrides."""
        config = cls()

        config.rpc_urls = _env_list("RPC_URLS", config.rpc_urls)
        if os.getenv("RPC_URL"):
            config.rpc_urls = [os.getenv("RPC_URL")] + config.rpc_urls

        if os.getenv("ROUTER_ADDRESS"):
            config.router_address = os.getenv("ROUTER_ADDRESS")

        if os.getenv("COPY_BPS"):
            config.copy_bps = int(os.getenv("COPY_BPS"))

        if os.getenv("MAX_REPLICA_AMOUNT"):
            config.max_replica_amount = int(os.getenv("MAX_REPLICA_AMOUNT"))

        if os.getenv("OUTPUT_PROTECTION"):
            config.output_protection = os.getenv("OUTPUT_PROTECTION").lower()

        if os.getenv("MAX_SLIPPAGE_BPS"):
            config.max_slippage_bps = int(os.getenv("MAX_SLIPPAGE_BPS"))

        if os.getenv("WORKERS"):
            config.workers = int(os.getenv("WORKERS"))

        if os.getenv("DB_PATH"):
            config.db_path = os.getenv("DB_PATH")

        config.master_secret = os.getenv("SWAPMIRROR_MASTER_SECRET") or None
        config.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN") or None

        return config

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if not self.rpc_urls:
            problems.append("No RPC URL configured (RPC_URL / RPC_URLS)")
        if not self.master_secret:
            problems.append("SWAPMIRROR_MASTER_SECRET is not set")
        if not 0 < self.copy_bps <= 10_000:
            problems.append(f"COPY_BPS must be in (0, 10000], got {self.copy_bps}")
        if self.output_protection not in ("slippage", "leader", "none"):
            problems.append(f"Unknown OUTPUT_PROTECTION: {self.output_protection}")
        if self.workers < 1:
            problems.append("WORKERS must be at least 1")
        return problems
