import logging

from magicformula.services.notifications.base import Notifier, TradeEvent

logger = logging.getLogger(__name__)


class LogNotifier(Notifier):
    async def notify(self, event: TradeEvent) -> None:
        if event.kind == "order_failed":
            logger.warning("ALERT %s", event.summary())
        else:
            logger.info("ALERT %s", event.summary())
