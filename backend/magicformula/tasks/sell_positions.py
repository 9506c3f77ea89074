import asyncio
import logging

from magicformula.core.config import settings
from magicformula.core.database import init_db
from magicformula.core.logging import setup_logging
from magicformula.scheduler.celery_app import app
from magicformula.services.broker import get_broker_gateway
from magicformula.services.cycle_base import CycleSummary
from magicformula.services.ledger_service import LedgerService
from magicformula.services.notifications import get_notifier
from magicformula.services.sell_cycle_service import SellCycleService

logger = logging.getLogger(__name__)


async def _sell_positions_async() -> CycleSummary:
    await init_db()
    service = SellCycleService(
        broker=get_broker_gateway("alpaca"),
        ledger=LedgerService(),
        notifier=get_notifier(settings),
    )
    return await service.run()


@app.task(name="magicformula.tasks.sell_positions.sell_positions")
def sell_positions() -> dict[str, object]:
    """Scheduled task to close positions past their holding threshold."""
    setup_logging("sell_cycle.log")
    summary = asyncio.run(_sell_positions_async())

    if summary.status == "aborted":
        logger.warning("Sell cycle aborted: %s", summary.message)

    return {
        "status": summary.status,
        "message": summary.message,
        "attempted": summary.attempted,
        "succeeded": summary.succeeded,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "held": summary.held,
    }
