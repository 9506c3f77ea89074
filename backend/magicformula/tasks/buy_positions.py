import asyncio
import logging

from magicformula.core.config import settings
from magicformula.core.database import init_db
from magicformula.core.logging import setup_logging
from magicformula.scheduler.celery_app import app
from magicformula.services.broker import get_broker_gateway
from magicformula.services.buy_cycle_service import BuyCycleService
from magicformula.services.cycle_base import CycleSummary
from magicformula.services.data_feed import get_data_feed
from magicformula.services.ledger_service import LedgerService
from magicformula.services.notifications import get_notifier

logger = logging.getLogger(__name__)


async def _buy_positions_async() -> CycleSummary:
    await init_db()
    service = BuyCycleService(
        feed=get_data_feed("fmp"),
        broker=get_broker_gateway("alpaca"),
        ledger=LedgerService(),
        notifier=get_notifier(settings),
    )
    return await service.run()


@app.task(name="magicformula.tasks.buy_positions.buy_positions")
def buy_positions() -> dict[str, object]:
    """Scheduled task to buy the quarterly Magic Formula batch."""
    setup_logging("buy_cycle.log")
    summary = asyncio.run(_buy_positions_async())

    if summary.status == "aborted":
        logger.warning("Buy cycle aborted: %s", summary.message)

    return {
        "status": summary.status,
        "message": summary.message,
        "attempted": summary.attempted,
        "succeeded": summary.succeeded,
        "skipped": summary.skipped,
        "failed": summary.failed,
    }
