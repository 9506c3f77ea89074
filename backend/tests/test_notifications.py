"""Tests for trade alert channels."""

import asyncio
import json

import httpx
import pytest

from magicformula.core.config import Settings
from magicformula.services.notifications import (
    CompositeNotifier,
    EmailNotifier,
    LogNotifier,
    Notifier,
    TradeEvent,
    WebhookNotifier,
    get_notifier,
)
from magicformula.services.notifications.email_notifier import render_trade_email


class BrokenNotifier(Notifier):
    async def notify(self, event):
        raise RuntimeError("channel down")


class SlowNotifier(Notifier):
    async def notify(self, event):
        await asyncio.sleep(5)


class CollectingNotifier(Notifier):
    def __init__(self):
        self.events = []

    async def notify(self, event):
        self.events.append(event)


class TestTradeEvent:
    def test_subjects(self):
        assert TradeEvent("buy", "AAA", 20, 60.0).subject == "Bought 20 shares of AAA"
        assert TradeEvent("sell", "AAA", 20, 60.0).subject == "Sold 20 shares of AAA"
        assert TradeEvent("order_failed", "AAA", 20, 60.0).subject == "Order failed for AAA"

    def test_summary_includes_total_and_detail(self):
        summary = TradeEvent("sell", "AAA", 10, 12.5, detail="Profitable").summary()

        assert "$125.00" in summary
        assert summary.endswith("Profitable")


class TestCompositeNotifier:
    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self):
        collector = CollectingNotifier()
        composite = CompositeNotifier([BrokenNotifier(), SlowNotifier(), collector], timeout=0.1)

        await composite.notify(TradeEvent("buy", "AAA", 1, 10.0))

        assert len(collector.events) == 1


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_summary_text(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, text="ok")

        notifier = WebhookNotifier("https://hooks.test/T000", transport=httpx.MockTransport(handler))
        await notifier.notify(TradeEvent("buy", "AAA", 3, 10.0))

        assert seen["url"] == "https://hooks.test/T000"
        assert seen["body"]["text"].startswith("Bought 3 shares of AAA")

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        notifier = WebhookNotifier(
            "https://hooks.test/T000", transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        with pytest.raises(httpx.HTTPStatusError):
            await notifier.notify(TradeEvent("buy", "AAA", 3, 10.0))


class TestEmailNotifier:
    def test_builds_plain_and_html_parts(self):
        notifier = EmailNotifier(sender="bot@example.com", password="secret", recipient="me@example.com")

        message = notifier.build_message(TradeEvent("sell", "AAA", 10, 12.5, detail="Unprofitable"))

        assert message["Subject"] == "Sold 10 shares of AAA"
        assert message["To"] == "me@example.com"
        parts = message.get_payload()
        assert [p.get_content_type() for p in parts] == ["text/plain", "text/html"]

    def test_html_escapes_detail(self):
        html = render_trade_email(TradeEvent("order_failed", "AAA", 1, 1.0, detail="<script>"))

        assert "&lt;script&gt;" in html
        assert "<script>" not in html

    @pytest.mark.asyncio
    async def test_notify_sends_via_smtp(self, monkeypatch):
        sent = []
        notifier = EmailNotifier(sender="bot@example.com", password="secret", recipient="me@example.com")
        monkeypatch.setattr(notifier, "_send", lambda message: sent.append(message["Subject"]))

        await notifier.notify(TradeEvent("buy", "AAA", 1, 1.0))

        assert sent == ["Bought 1 shares of AAA"]


class TestGetNotifier:
    def test_log_only_by_default(self):
        notifier = get_notifier(Settings(_env_file=None, EMAIL_FROM="", SLACK_WEBHOOK_URL=""))

        assert [type(n) for n in notifier.notifiers] == [LogNotifier]

    def test_all_channels_when_configured(self):
        config = Settings(
            _env_file=None,
            EMAIL_FROM="bot@example.com",
            EMAIL_PASS="secret",
            EMAIL_TO="me@example.com",
            SLACK_WEBHOOK_URL="https://hooks.test/T000",
        )

        notifier = get_notifier(config)

        assert [type(n) for n in notifier.notifiers] == [LogNotifier, EmailNotifier, WebhookNotifier]
