"""Tests for the Alpaca gateway against a stubbed TradingClient."""

from types import SimpleNamespace

import pytest
from alpaca.trading.enums import OrderSide, OrderStatus

from magicformula.core.exceptions import DataFetchError, OrderError
from magicformula.services.broker.alpaca_gateway import AlpacaGateway, _normalize_base_url


class StubTradingClient:
    def __init__(self, order=None, polled=None, fail_submit=False, fail_account=False):
        self.order = order
        self.polled = list(polled or [])
        self.fail_submit = fail_submit
        self.fail_account = fail_account
        self.requests = []

    def get_account(self):
        if self.fail_account:
            raise RuntimeError("401 unauthorized")
        return SimpleNamespace(cash="6000.50", portfolio_value="100000")

    def get_all_positions(self):
        return [
            SimpleNamespace(symbol="AAA", qty="10", avg_entry_price="100.0", current_price="90.5"),
            SimpleNamespace(symbol="BBB", qty="2.5", avg_entry_price=None, current_price="12"),
        ]

    def submit_order(self, request):
        if self.fail_submit:
            raise RuntimeError("insufficient buying power")
        self.requests.append(request)
        return self.order

    def get_order_by_id(self, order_id):
        return self.polled.pop(0)


def _order(status, filled_avg_price=None):
    return SimpleNamespace(id="abc-123", status=status, filled_avg_price=filled_avg_price)


def _gateway(client, fill_timeout_sec=1.0):
    return AlpacaGateway(client=client, fill_timeout_sec=fill_timeout_sec, poll_interval_sec=0)


class TestAccount:
    @pytest.mark.asyncio
    async def test_account_snapshot(self):
        account = await _gateway(StubTradingClient()).get_account()

        assert account.cash == pytest.approx(6000.50)
        assert account.portfolio_value == pytest.approx(100000.0)

    @pytest.mark.asyncio
    async def test_account_failure(self):
        with pytest.raises(DataFetchError):
            await _gateway(StubTradingClient(fail_account=True)).get_account()

    @pytest.mark.asyncio
    async def test_positions(self):
        positions = await _gateway(StubTradingClient()).get_positions()

        assert [(p.symbol, p.qty, p.avg_entry_price, p.current_price) for p in positions] == [
            ("AAA", 10.0, 100.0, 90.5),
            ("BBB", 2.5, None, 12.0),
        ]


class TestSubmitOrder:
    @pytest.mark.asyncio
    async def test_filled_order_reports_fill_price(self):
        client = StubTradingClient(order=_order(OrderStatus.FILLED, "60.25"))

        confirmation = await _gateway(client).submit_order("AAA", 20, "buy", reference_price=60.0)

        assert confirmation.order_id == "abc-123"
        assert confirmation.price == pytest.approx(60.25)
        assert confirmation.status == "filled"
        request = client.requests[0]
        assert request.symbol == "AAA"
        assert request.side == OrderSide.BUY
        assert float(request.qty) == 20

    @pytest.mark.asyncio
    async def test_polls_until_filled(self):
        client = StubTradingClient(
            order=_order(OrderStatus.NEW),
            polled=[_order(OrderStatus.PARTIALLY_FILLED), _order(OrderStatus.FILLED, "10.5")],
        )

        confirmation = await _gateway(client).submit_order("AAA", 5, "sell", reference_price=10.0)

        assert confirmation.price == pytest.approx(10.5)
        assert confirmation.side == "sell"

    @pytest.mark.asyncio
    async def test_rejected_order_raises(self):
        client = StubTradingClient(order=_order(OrderStatus.ACCEPTED), polled=[_order(OrderStatus.REJECTED)])

        with pytest.raises(OrderError):
            await _gateway(client).submit_order("AAA", 5, "buy", reference_price=10.0)

    @pytest.mark.asyncio
    async def test_fill_timeout_falls_back_to_reference_price(self):
        client = StubTradingClient(order=_order(OrderStatus.NEW))

        confirmation = await _gateway(client, fill_timeout_sec=0).submit_order(
            "AAA", 5, "buy", reference_price=10.0
        )

        assert confirmation.price == pytest.approx(10.0)
        assert confirmation.status == "new"

    @pytest.mark.asyncio
    async def test_submit_failure_raises_order_error(self):
        with pytest.raises(OrderError) as excinfo:
            await _gateway(StubTradingClient(fail_submit=True)).submit_order("AAA", 5, "buy")
        assert excinfo.value.symbol == "AAA"

    @pytest.mark.asyncio
    async def test_unknown_side(self):
        with pytest.raises(OrderError):
            await _gateway(StubTradingClient()).submit_order("AAA", 5, "short")


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://paper-api.alpaca.markets", "https://paper-api.alpaca.markets"),
        ("https://paper-api.alpaca.markets/v2/", "https://paper-api.alpaca.markets"),
    ],
)
def test_normalize_base_url(url, expected):
    assert _normalize_base_url(url) == expected
