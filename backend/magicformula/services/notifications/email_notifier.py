"""SMTP e-mail alerts for trades (Gmail app password by default)."""

import asyncio
import logging
import smtplib
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from magicformula.services.notifications.base import Notifier, TradeEvent

logger = logging.getLogger(__name__)

HEADER_COLORS = {
    "buy": "#1976d2",
    "sell": "#d32f2f",
    "order_failed": "#f57c00",
}


def render_trade_email(event: TradeEvent) -> str:
    """Small HTML report table for a trade event."""
    rows = [
        ("Symbol", escape(event.symbol)),
        ("Quantity", str(event.qty)),
        ("Price per Share", f"${event.price:.2f}"),
        ("Total Proceeds" if event.kind == "sell" else "Total Investment", f"${event.total:.2f}"),
    ]
    if event.detail:
        rows.append(("Detail", escape(event.detail)))

    table = "".join(
        f'<tr><th style="text-align:left;padding:8px">{label}</th>'
        f'<td style="padding:8px">{value}</td></tr>'
        for label, value in rows
    )
    color = HEADER_COLORS.get(event.kind, "#555555")
    subject = escape(event.subject)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\" />"
        f"<title>{subject}</title></head>"
        "<body style=\"font-family:Arial,sans-serif\">"
        f"<div style=\"background:{color};color:#fff;padding:16px\"><h1>{subject}</h1></div>"
        f"<table style=\"border-collapse:collapse;margin:16px 0\">{table}</table>"
        f"<p>Regards,<br/>Magic Formula Trader</p>"
        f"<p style=\"color:#999\">&copy; {date.today().year} Magic Formula Trader</p>"
        "</body></html>"
    )


class EmailNotifier(Notifier):
    def __init__(
        self,
        sender: str,
        password: str,
        recipient: str,
        host: str = "smtp.gmail.com",
        port: int = 465,
        timeout: float = 10.0,
    ):
        self.sender = sender
        self.password = password
        self.recipient = recipient
        self.host = host
        self.port = port
        self.timeout = timeout

    async def notify(self, event: TradeEvent) -> None:
        message = self.build_message(event)
        await asyncio.to_thread(self._send, message)
        logger.info("Email sent: %s", event.subject)

    def build_message(self, event: TradeEvent) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = event.subject
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg.attach(MIMEText(event.summary(), "plain"))
        msg.attach(MIMEText(render_trade_email(event), "html"))
        return msg

    def _send(self, message: MIMEMultipart) -> None:
        with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
            server.login(self.sender, self.password)
            server.sendmail(self.sender, [self.recipient], message.as_string())
