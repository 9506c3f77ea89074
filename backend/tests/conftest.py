"""Shared fixtures: in-memory ledger and in-process fakes for the feed, broker and notifier."""

import asyncio
from datetime import datetime, timezone
from itertools import count
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from magicformula.core.config import Settings
from magicformula.core.database import init_db
from magicformula.core.exceptions import DataFetchError, OrderError
from magicformula.core.metrics import metrics
from magicformula.services.broker.base import BrokerGateway, BrokerPosition, OrderConfirmation
from magicformula.services.data_feed.base import DataFeed
from magicformula.services.ledger_service import LedgerService
from magicformula.services.notifications.base import Notifier, TradeEvent
from magicformula.strategy.allocator import AccountSnapshot
from magicformula.strategy.ranking import StockMetric


class FakeDataFeed(DataFeed):
    def __init__(
        self,
        symbols: Optional[List[str]] = None,
        stock_metrics: Optional[List[StockMetric]] = None,
        quotes: Optional[Dict[str, Optional[float]]] = None,
        screen_error: bool = False,
        failing_quotes: tuple = (),
    ):
        self.symbols = symbols or []
        self.stock_metrics = stock_metrics or []
        self.quotes = quotes or {}
        self.screen_error = screen_error
        self.failing_quotes = set(failing_quotes)
        self.quote_calls: List[str] = []

    async def screen(self, exchange: str, min_market_cap: float) -> List[str]:
        if self.screen_error:
            raise DataFetchError("screener unavailable")
        return list(self.symbols)

    async def fetch_metrics(self, symbols: List[str]) -> List[StockMetric]:
        return [m for m in self.stock_metrics if m.symbol in symbols]

    async def fetch_quote(self, symbol: str) -> Optional[float]:
        self.quote_calls.append(symbol)
        if symbol in self.failing_quotes:
            raise DataFetchError("quote unavailable", symbol=symbol)
        return self.quotes.get(symbol)


class FakeBroker(BrokerGateway):
    def __init__(
        self,
        account: Optional[AccountSnapshot] = None,
        positions: Optional[List[BrokerPosition]] = None,
        rejected: tuple = (),
        fill_prices: Optional[Dict[str, float]] = None,
        positions_error: bool = False,
        delay: float = 0.0,
    ):
        self.account = account or AccountSnapshot(cash=100_000.0, portfolio_value=100_000.0)
        self.positions = positions or []
        self.rejected = set(rejected)
        self.fill_prices = fill_prices or {}
        self.positions_error = positions_error
        self.delay = delay
        self.orders: List[OrderConfirmation] = []
        self._ids = count(1)

    async def get_account(self) -> AccountSnapshot:
        return self.account

    async def get_positions(self) -> List[BrokerPosition]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.positions_error:
            raise DataFetchError("positions unavailable")
        return list(self.positions)

    async def submit_order(self, symbol, qty, side, reference_price=None) -> OrderConfirmation:
        if symbol in self.rejected:
            raise OrderError(f"insufficient buying power for {symbol}", symbol=symbol)
        confirmation = OrderConfirmation(
            order_id=f"order-{next(self._ids)}",
            symbol=symbol,
            side=side,
            qty=qty,
            price=self.fill_prices.get(symbol, reference_price),
            status="filled",
            submitted_at=datetime.now(timezone.utc),
        )
        self.orders.append(confirmation)
        return confirmation


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.events: List[TradeEvent] = []
        self.fail = fail

    async def notify(self, event: TradeEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("smtp down")

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.clear_buffer()
    metrics.enable()
    yield
    metrics.clear_buffer()


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        IO_TIMEOUT_SEC=2.0,
        LEDGER_WRITE_RETRIES=2,
        ENFORCE_RUN_LOCK=True,
        ALLOCATOR_RESERVE_CASH=True,
        RANK_EXCLUDE_ZERO_FACTORS=True,
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return LedgerService(session_factory=session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()
