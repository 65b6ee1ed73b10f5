"""Proactive notifications — Slack and Telegram webhooks.

Fires notifications on:
- Usage refresh failures (first failure after a success)
- Recovery after failed refreshes
- Rate-limit warnings (window usage above the configured percentage)

All webhook calls are non-blocking (fire-and-forget via httpx async).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

import httpx

from src.config import settings
from src.usage.scheduler import USAGE_ERROR, USAGE_UPDATED

logger = logging.getLogger(__name__)


class NotifyLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERY = "recovery"


_EMOJI = {
    NotifyLevel.INFO: "ℹ️",
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
    NotifyLevel.RECOVERY: "✅",
}


class NotificationManager:
    """Central dispatcher for Slack / Telegram notifications."""

    def __init__(
        self,
        slack_webhook: str = "",
        telegram_token: str = "",
        telegram_chat_id: str = "",
    ) -> None:
        self.slack_webhook = slack_webhook or settings.slack_webhook_url
        self.telegram_token = telegram_token or settings.telegram_bot_token
        self.telegram_chat_id = telegram_chat_id or settings.telegram_chat_id
        self._enabled = bool(self.slack_webhook or self.telegram_token)

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "slack_configured": bool(self.slack_webhook),
            "telegram_configured": bool(self.telegram_token and self.telegram_chat_id),
        }

    # -- High-level notification methods ------------------------------------

    async def notify_refresh_failed(self, error: str) -> None:
        level = NotifyLevel.CRITICAL
        text = f"{_EMOJI[level]} *Usage refresh failed*\n{error[:500]}\n"
        await self._send(text, level)

    async def notify_refresh_recovered(self) -> None:
        level = NotifyLevel.RECOVERY
        await self._send(f"{_EMOJI[level]} *Usage refresh recovered*\n", level)

    async def notify_rate_limit_warning(
        self,
        window: str,
        pct_used: float,
        tokens_used: int,
        tokens_cap: int,
        minutes_until_reset: int | None = None,
    ) -> None:
        """Notify when approaching rate limits."""
        level = NotifyLevel.CRITICAL if pct_used >= 95 else NotifyLevel.WARNING
        text = (
            f"{_EMOJI[level]} *Rate Limit Warning*\n"
            f"Window: {window}\n"
            f"Usage: {pct_used:.1f}% ({tokens_used:,} / {tokens_cap:,} tokens)\n"
        )
        if minutes_until_reset is not None:
            hours, minutes = divmod(minutes_until_reset, 60)
            text += f"Resets in: {hours}h {minutes}m\n"
        await self._send(text, level)

    # -- Low-level dispatch -------------------------------------------------

    async def _send(self, text: str, level: NotifyLevel) -> None:
        """Dispatch to all configured channels (fire-and-forget)."""
        if not self._enabled:
            return
        tasks = []
        if self.slack_webhook:
            tasks.append(self._send_slack(text))
        if self.telegram_token and self.telegram_chat_id:
            tasks.append(self._send_telegram(text))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_slack(self, text: str) -> None:
        """POST to Slack incoming webhook."""
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(
                    self.slack_webhook,
                    json={"text": text, "mrkdwn": True},
                )
                if resp.status_code != 200:
                    logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Slack notification failed: %s", exc)

    async def _send_telegram(self, text: str) -> None:
        """POST to Telegram Bot API."""
        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(
                    url,
                    json={
                        "chat_id": self.telegram_chat_id,
                        "text": text,
                        "parse_mode": "Markdown",
                    },
                )
                if resp.status_code != 200:
                    logger.warning("Telegram API returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Telegram notification failed: %s", exc)


class UsageAlerts:
    """Scheduler subscriber turning refresh events into notifications.

    Only transitions are announced: the first failure after a success, the
    first success after failures, and a window crossing the warning
    threshold (re-armed once it drops back below).
    """

    def __init__(
        self,
        notifier: NotificationManager,
        caps: dict[str, int] | None = None,
        warn_percent: float | None = None,
    ) -> None:
        self.notifier = notifier
        self.caps = caps if caps is not None else {
            "session": settings.session_limit_tokens,
            "weekly": settings.weekly_limit_tokens,
        }
        self.warn_percent = warn_percent if warn_percent is not None else settings.rate_limit_warn_percent
        self._failing = False
        self._warned: set[str] = set()

    def __call__(self, event: str, payload: Any) -> None:
        for coro in self.pending(event, payload):
            self._dispatch(coro)

    def pending(self, event: str, payload: Any) -> list[Any]:
        """Return the notification coroutines an event should fire."""
        if event == USAGE_ERROR:
            if self._failing:
                return []
            self._failing = True
            return [self.notifier.notify_refresh_failed(str(payload))]

        if event != USAGE_UPDATED:
            return []

        coros: list[Any] = []
        if self._failing:
            self._failing = False
            coros.append(self.notifier.notify_refresh_recovered())

        for label, window in payload.rate_limits.items():
            cap = self.caps.get(label, 0)
            if cap <= 0:
                continue
            pct = window.percent_of(cap)
            if pct < self.warn_percent:
                self._warned.discard(label)
                continue
            if label in self._warned:
                continue
            self._warned.add(label)
            coros.append(
                self.notifier.notify_rate_limit_warning(
                    label, pct, window.tokens_used, cap, window.minutes_until_reset,
                )
            )
        return coros

    @staticmethod
    def _dispatch(coro: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop (e.g. CLI one-shot): deliver synchronously
            asyncio.run(coro)
            return
        asyncio.ensure_future(coro)
