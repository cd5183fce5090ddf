"""
SignalGrade — Scan Alert Delivery

Pushes scan notifications to Discord (webhook embeds) and Telegram
(bot API). A channel without credentials is left out of the fan-out and
reported as not delivered; a failed HTTP call is logged, never raised.
"""

from __future__ import annotations

import asyncio
import enum
from typing import Any, Optional

import httpx
import structlog

from signalgrade.config import Settings, get_settings
from signalgrade.models import Direction, ScanNotification
from signalgrade.utils import format_currency, format_pct, format_timestamp

log = structlog.get_logger(__name__)

HTTP_TIMEOUT = 10.0


class AlertType(str, enum.Enum):
    PATTERN_ALERT = "pattern_alert"
    SCAN_SUMMARY = "scan_summary"
    SYSTEM = "system"


_STYLE: dict[AlertType, tuple[str, int]] = {
    AlertType.PATTERN_ALERT: ("🎯", 0x2ECC71),
    AlertType.SCAN_SUMMARY: ("🔎", 0xF1C40F),
    AlertType.SYSTEM: ("🛠️", 0x7289DA),
}

_BIAS_MARK: dict[Direction, str] = {
    Direction.BULLISH: "▲",
    Direction.BEARISH: "▼",
    Direction.NEUTRAL: "■",
}


# ──────────────────────────────────────────────
# Channels
# ──────────────────────────────────────────────


class _Channel:
    """One delivery target. Subclasses supply the endpoint and payload shape."""

    name = "channel"

    @property
    def configured(self) -> bool:
        raise NotImplementedError

    def endpoint(self) -> str:
        raise NotImplementedError

    def payload(self, title: str, message: str, alert_type: AlertType) -> dict[str, Any]:
        raise NotImplementedError

    async def send(
        self,
        title: str,
        message: str,
        alert_type: AlertType = AlertType.SYSTEM,
        client: Optional[httpx.AsyncClient] = None,
    ) -> bool:
        """POST one message. Returns False when unconfigured or on any HTTP failure."""
        if not self.configured:
            return False
        body = self.payload(title, message, alert_type)
        try:
            if client is None:
                async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as own:
                    resp = await own.post(self.endpoint(), json=body)
            else:
                resp = await client.post(self.endpoint(), json=body)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.error(f"notification.{self.name}.failed", title=title, error=str(exc))
            return False
        log.info(f"notification.{self.name}.sent", title=title, alert_type=alert_type.value)
        return True


class DiscordNotifier(_Channel):
    """Webhook embed, coloured by alert type."""

    name = "discord"

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def endpoint(self) -> str:
        return self.webhook_url

    def payload(self, title: str, message: str, alert_type: AlertType) -> dict[str, Any]:
        icon, color = _STYLE[alert_type]
        return {
            "username": "SignalGrade",
            "embeds": [{"title": f"{icon} {title}", "description": message, "color": color}],
        }


class TelegramNotifier(_Channel):
    """Bot API ``sendMessage`` to a single chat."""

    name = "telegram"

    def __init__(self, bot_token: str, chat_id: str):
        self.bot_token = bot_token
        self.chat_id = chat_id

    @property
    def configured(self) -> bool:
        return bool(self.bot_token) and bool(self.chat_id)

    def endpoint(self) -> str:
        return f"https://api.telegram.org/bot{self.bot_token}/sendMessage"

    def payload(self, title: str, message: str, alert_type: AlertType) -> dict[str, Any]:
        icon, _ = _STYLE[alert_type]
        return {
            "chat_id": self.chat_id,
            "text": f"{icon} *{title}*\n\n{message}",
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }


# ──────────────────────────────────────────────
# Rendering
# ──────────────────────────────────────────────


def format_scan_notification(notification: ScanNotification) -> tuple[str, str]:
    """Render a scan notification as (title, message)."""
    n = notification
    title = f"{n.symbol} {n.overall_bias.value.upper()} ({n.recommended_action.upper()})"

    lines = [
        f"{_BIAS_MARK[n.overall_bias]} Bias: {n.overall_bias.value}, "
        f"confidence {format_pct(n.confidence, decimals=0, show_sign=False)}",
        f"Price: {format_currency(n.current_price)}",
        f"Patterns: {n.pattern_count}",
    ]
    if n.top_pattern:
        lines.append(
            f"Top pattern: {n.top_pattern} "
            f"({format_pct(n.top_pattern_confidence, decimals=0, show_sign=False)})"
        )
    if n.alert_message:
        lines += ["", n.alert_message]
    lines.append(f"Scanned {format_timestamp(n.scanned_at)} UTC")
    return title, "\n".join(lines)


# ──────────────────────────────────────────────
# Dispatcher
# ──────────────────────────────────────────────


class NotificationDispatcher:
    """Concurrent fan-out to every channel built from settings.

    Usage::

        dispatcher = get_dispatcher()
        await dispatcher.send_scan_notification(build_scan_notification(result))
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        s = settings or get_settings()
        self.transport = transport
        self.channels: list[_Channel] = [
            DiscordNotifier(s.discord_webhook_url),
            TelegramNotifier(s.telegram_bot_token, s.telegram_chat_id),
        ]

    @property
    def active_channels(self) -> list[str]:
        return [c.name for c in self.channels if c.configured]

    async def send(
        self,
        title: str,
        message: str,
        alert_type: AlertType = AlertType.SYSTEM,
    ) -> dict[str, bool]:
        """Deliver to all configured channels at once; maps channel name to success."""
        status = {c.name: False for c in self.channels}
        live = [c for c in self.channels if c.configured]
        if not live:
            return status

        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, transport=self.transport) as client:
            sent = await asyncio.gather(*(c.send(title, message, alert_type, client) for c in live))
        status.update({c.name: ok for c, ok in zip(live, sent)})
        return status

    async def send_scan_notification(self, notification: ScanNotification) -> dict[str, bool]:
        """Alerts go out as pattern alerts, everything else as a scan summary."""
        title, message = format_scan_notification(notification)
        kind = AlertType.PATTERN_ALERT if notification.is_alert else AlertType.SCAN_SUMMARY
        return await self.send(title, message, kind)


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher built from the cached settings."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
