from magicformula.core.config import Settings, settings as default_settings
from magicformula.services.notifications.base import Notifier, TradeEvent
from magicformula.services.notifications.composite import CompositeNotifier
from magicformula.services.notifications.email_notifier import EmailNotifier
from magicformula.services.notifications.log_notifier import LogNotifier
from magicformula.services.notifications.webhook_notifier import WebhookNotifier


def get_notifier(config: Settings = default_settings) -> CompositeNotifier:
    """Log channel always; e-mail and webhook when configured."""
    channels: list[Notifier] = [LogNotifier()]
    if config.EMAIL_FROM and config.EMAIL_PASS and config.EMAIL_TO:
        channels.append(
            EmailNotifier(
                sender=config.EMAIL_FROM,
                password=config.EMAIL_PASS,
                recipient=config.EMAIL_TO,
                host=config.SMTP_HOST,
                port=config.SMTP_PORT,
            )
        )
    if config.SLACK_WEBHOOK_URL:
        channels.append(WebhookNotifier(config.SLACK_WEBHOOK_URL))
    return CompositeNotifier(channels, timeout=config.IO_TIMEOUT_SEC)


__all__ = [
    "CompositeNotifier",
    "EmailNotifier",
    "LogNotifier",
    "Notifier",
    "TradeEvent",
    "WebhookNotifier",
    "get_notifier",
]
