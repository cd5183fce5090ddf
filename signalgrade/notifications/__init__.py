# Alert delivery channels (Discord, Telegram)
from signalgrade.notifications.dispatcher import (
    AlertType,
    DiscordNotifier,
    NotificationDispatcher,
    TelegramNotifier,
    format_scan_notification,
    get_dispatcher,
)

__all__ = [
    "AlertType",
    "DiscordNotifier",
    "NotificationDispatcher",
    "TelegramNotifier",
    "format_scan_notification",
    "get_dispatcher",
]
