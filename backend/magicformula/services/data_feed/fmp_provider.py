import asyncio
import logging
from typing import Any, List, Optional

import httpx

from magicformula.core.config import settings
from magicformula.core.exceptions import DataFetchError
from magicformula.services.data_feed.base import DataFeed
from magicformula.strategy.ranking import StockMetric
from magicformula.strategy.validation import to_float

logger = logging.getLogger(__name__)


class FMPDataFeed(DataFeed):
    """
    Financial Modeling Prep provider.

    Uses the stock screener for the universe, quarterly key metrics for
    return on capital / earnings yield, and the quote endpoint for prices.
    Metrics are fetched in concurrent batches with a pause between batches
    to stay under the API rate limit.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        batch_size: Optional[int] = None,
        batch_pause_sec: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff_sec: Optional[float] = None,
        screener_limit: Optional[int] = None,
        symbol_timeout_sec: Optional[float] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.FMP_API_KEY
        self.base_url = (base_url or settings.FMP_BASE_URL).rstrip("/")
        self.batch_size = max(1, batch_size or settings.METRICS_BATCH_SIZE)
        self.batch_pause_sec = settings.METRICS_BATCH_PAUSE_SEC if batch_pause_sec is None else batch_pause_sec
        self.max_retries = max(1, max_retries or settings.DATA_FEED_MAX_RETRIES)
        self.retry_backoff_sec = (
            settings.DATA_FEED_RETRY_BACKOFF_SEC if retry_backoff_sec is None else retry_backoff_sec
        )
        self.screener_limit = screener_limit or settings.SCREENER_LIMIT
        self.symbol_timeout_sec = settings.IO_TIMEOUT_SEC if symbol_timeout_sec is None else symbol_timeout_sec
        self.timeout = timeout
        self.transport = transport

    async def screen(self, exchange: str, min_market_cap: float) -> List[str]:
        params = {
            "exchange": exchange,
            "marketCapMoreThan": min_market_cap,
            "limit": self.screener_limit,
        }
        async with self._client() as client:
            data = await self._get_json(client, "/stock-screener", params)

        if not isinstance(data, list):
            raise DataFetchError(f"Unexpected screener payload: {type(data).__name__}")
        return [str(row["symbol"]) for row in data if isinstance(row, dict) and row.get("symbol")]

    async def fetch_metrics(self, symbols: List[str]) -> List[StockMetric]:
        results: List[StockMetric] = []
        if not symbols:
            return results

        async with self._client() as client:
            for start in range(0, len(symbols), self.batch_size):
                batch = symbols[start:start + self.batch_size]
                fetched = await asyncio.gather(
                    *(self._fetch_symbol_metrics_bounded(client, symbol) for symbol in batch)
                )
                results.extend(metric for metric in fetched if metric is not None)

                if start + self.batch_size < len(symbols) and self.batch_pause_sec:
                    await asyncio.sleep(self.batch_pause_sec)

        logger.info("Fetched financial metrics for %s of %s symbols", len(results), len(symbols))
        return results

    async def fetch_quote(self, symbol: str) -> Optional[float]:
        async with self._client() as client:
            data = await self._get_json(client, f"/quote/{symbol}", {}, symbol=symbol)
        row = _first_row(data)
        if row is None:
            return None
        return to_float(row.get("price"))

    async def _fetch_symbol_metrics_bounded(
        self, client: httpx.AsyncClient, symbol: str
    ) -> Optional[StockMetric]:
        # a stalled symbol is dropped, the rest of the batch still ranks
        try:
            return await asyncio.wait_for(self._fetch_symbol_metrics(client, symbol), self.symbol_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("Timed out fetching data for %s after %ss", symbol, self.symbol_timeout_sec)
            return None

    async def _fetch_symbol_metrics(self, client: httpx.AsyncClient, symbol: str) -> Optional[StockMetric]:
        try:
            data = await self._get_json(client, f"/key-metrics/{symbol}", {"period": "quarter"}, symbol=symbol)
        except DataFetchError as exc:
            logger.warning("Error fetching data for %s: %s", symbol, exc)
            return None

        row = _first_row(data)
        if row is None:
            logger.warning("No key metrics returned for %s", symbol)
            return None

        return StockMetric(
            symbol=symbol,
            return_on_capital=to_float(row.get("roic")),
            earnings_yield=to_float(row.get("earningsYield")),
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, Any],
        symbol: Optional[str] = None,
    ) -> Any:
        query = {**params, "apikey": self.api_key}
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.get(path, params=query)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as exc:
                last_error = exc
                status = exc.response.status_code
                if 400 <= status < 500 and status != 429:
                    break
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc

            logger.warning(
                "FMP request %s failed (attempt %s/%s): %s",
                path,
                attempt,
                self.max_retries,
                last_error,
            )
            if attempt < self.max_retries and self.retry_backoff_sec:
                await asyncio.sleep(self.retry_backoff_sec * (2 ** (attempt - 1)))

        raise DataFetchError(f"FMP request {path} failed: {last_error}", symbol=symbol) from last_error

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)


def _first_row(data: Any) -> Optional[dict[str, Any]]:
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return None
