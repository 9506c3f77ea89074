import asyncio
import logging
from typing import Sequence

from magicformula.services.notifications.base import Notifier, TradeEvent

logger = logging.getLogger(__name__)


class CompositeNotifier(Notifier):
    """
    Fans an event out to every channel.

    Fire-and-forget: each delivery is bounded by a timeout and any failure is
    logged, never raised, so alerts cannot stall or break a trading cycle.
    """

    def __init__(self, notifiers: Sequence[Notifier], timeout: float = 15.0):
        self.notifiers = list(notifiers)
        self.timeout = timeout

    async def notify(self, event: TradeEvent) -> None:
        for notifier in self.notifiers:
            try:
                await asyncio.wait_for(notifier.notify(event), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "%s timed out after %ss for %s", type(notifier).__name__, self.timeout, event.symbol
                )
            except Exception as e:
                logger.error("Error sending %s notification for %s: %s", type(notifier).__name__, event.symbol, e)
