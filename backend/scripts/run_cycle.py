#!/usr/bin/env python3
"""
Run a buy or sell cycle once, outside the Celery schedule.

Usage:
    python scripts/run_cycle.py buy
    python scripts/run_cycle.py sell [--no-lock]
"""

import asyncio
import logging
import os
import sys
from argparse import ArgumentParser

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from magicformula.core.config import settings
from magicformula.core.database import init_db
from magicformula.core.logging import setup_logging
from magicformula.services.broker import get_broker_gateway
from magicformula.services.buy_cycle_service import BuyCycleService
from magicformula.services.data_feed import get_data_feed
from magicformula.services.ledger_service import LedgerService
from magicformula.services.notifications import get_notifier
from magicformula.services.sell_cycle_service import SellCycleService

logger = logging.getLogger("run_cycle")


async def run_cycle(job: str, enforce_lock: bool = True):
    """Run one cycle against the configured broker, feed and ledger."""
    config = settings.model_copy(update={"ENFORCE_RUN_LOCK": enforce_lock})
    await init_db()

    broker = get_broker_gateway("alpaca")
    ledger = LedgerService()
    notifier = get_notifier(config)

    if job == "buy":
        service = BuyCycleService(
            feed=get_data_feed("fmp"),
            broker=broker,
            ledger=ledger,
            notifier=notifier,
            config=config,
        )
    else:
        service = SellCycleService(broker=broker, ledger=ledger, notifier=notifier, config=config)

    return await service.run()


def main():
    parser = ArgumentParser(description="Run a Magic Formula trading cycle once")
    parser.add_argument("job", choices=["buy", "sell"], help="Cycle to run")
    parser.add_argument(
        "--no-lock",
        action="store_true",
        help="Skip the once-per-day run lock (manual reruns)"
    )
    args = parser.parse_args()

    setup_logging(f"{args.job}_cycle.log")
    summary = asyncio.run(run_cycle(args.job, enforce_lock=not args.no_lock))

    if summary.status in ("completed", "duplicate") and summary.failed == 0:
        logger.info("Cycle finished: %s", summary.one_line())
        sys.exit(0)
    else:
        logger.error("Cycle finished with problems: %s", summary.one_line())
        sys.exit(1)


if __name__ == "__main__":
    main()
