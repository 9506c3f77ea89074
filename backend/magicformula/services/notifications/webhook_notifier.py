import logging
from typing import Optional

import httpx

from magicformula.services.notifications.base import Notifier, TradeEvent

logger = logging.getLogger(__name__)


class WebhookNotifier(Notifier):
    """Posts a one-line message to a Slack-compatible incoming webhook."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def notify(self, event: TradeEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.url, json={"text": event.summary()})
            response.raise_for_status()
