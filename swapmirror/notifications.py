"""Follower notifications: sink interface, Telegram and log implementations."""

import logging
from typing import List, Optional, Protocol, Tuple

import httpx

from .types import ReplicationAttempt

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Best-effort delivery of a message to one recipient"""

    async def notify(self, recipient_id: str, message: str) -> None: ...


def format_address(address: str) -> str:
    """Shorten an address for display: 0x1234...abcd"""
    if not address or len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_attempt(attempt: ReplicationAttempt) -> str:
    """User-facing text for a replication outcome."""
    leader = format_address(attempt.intent.leader)
    if attempt.success:
        return f"🔔 Replicated trade from {leader}. Transaction hash: {attempt.tx_hash}"
    return f"🔔 Failed to replicate trade from {leader}. Error: {attempt.reason}"


async def safe_notify(sink: NotificationSink, recipient_id: str, message: str) -> bool:
    """Deliver a notification; failures are logged, never raised."""
    try:
        await sink.notify(recipient_id, message)
        return True
    except Exception as e:
        logger.error(f"Notification to {recipient_id} failed: {e}")
        return False


class TelegramNotifier:
    """Send messages to Telegram chats using a BotFather token.

    Follower ids are Telegram chat ids.
    """

    def __init__(self, bot_token: str, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        if not bot_token:
            raise ValueError("Telegram bot token must be provided")
        self.bot_token = bot_token
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, recipient_id: str, message: str) -> None:
        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        response = await self.client.post(
            url,
            json={"chat_id": recipient_id, "text": message, "disable_web_page_preview": True},
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self.client.aclose()


class LoggingNotifier:
    """Writes notifications to the log; used when no chat channel is configured."""

    def __init__(self, history: int = 100):
        self.history = history
        self.sent: List[Tuple[str, str]] = []

    async def notify(self, recipient_id: str, message: str) -> None:
        logger.info(f"Notify {recipient_id}: {message}")
        self.sent.append((recipient_id, message))
        del self.sent[:-self.history]


def build_notifier(bot_token: Optional[str]) -> NotificationSink:
    """Telegram when a token is configured, log output otherwise."""
    if bot_token:
        return TelegramNotifier(bot_token)
    return LoggingNotifier()
