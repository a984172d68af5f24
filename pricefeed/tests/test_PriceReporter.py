"""Unit tests for PriceReporter."""

import asyncio
from decimal import Decimal

import httpx
import pytest

from pricefeed.src.Clock import ManualClock
from pricefeed.src.errors import NotAuthorized
from pricefeed.src.PriceFeedEngine import PriceFeedEngine
from pricefeed.src.PriceReporter import PriceReporter, ReporterError

SOURCE = "reporter"


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def ticker(price: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"price": price, "volume": "1"})

    return handler


@pytest.fixture
def engine() -> PriceFeedEngine:
    engine = PriceFeedEngine(owner="owner", clock=ManualClock(10))
    engine.authorize_source("owner", SOURCE)
    return engine


class TestPriceReporterInit:
    """Test reporter configuration."""

    def test_defaults(self, engine: PriceFeedEngine) -> None:
        """Defaults should be reasonable."""
        reporter = PriceReporter(engine, SOURCE)
        assert reporter.weight == 50
        assert reporter.decimals == 6
        assert reporter.timeout == 10.0

    def test_negative_decimals(self, engine: PriceFeedEngine) -> None:
        """Negative decimals are rejected."""
        with pytest.raises(ValueError, match="decimals must be non-negative"):
            PriceReporter(engine, SOURCE, decimals=-1)

    def test_scale_truncates(self, engine: PriceFeedEngine) -> None:
        """Scaling keeps `decimals` digits and truncates the rest."""
        reporter = PriceReporter(engine, SOURCE, decimals=2)
        assert reporter.scale(Decimal("1.859")) == 185


class TestFetch:
    """Test ticker fetching."""

    def test_fetch_url_and_price(self, engine: PriceFeedEngine) -> None:
        """fetch() requests the uppercase product ticker."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"price": "1.85"})

        reporter = PriceReporter(engine, SOURCE, client=make_client(handler))
        price = asyncio.run(reporter.fetch("stx", "usd"))

        assert price == Decimal("1.85")
        assert seen == ["https://api.exchange.coinbase.com/products/STX-USD/ticker"]

    def test_fetch_http_error(self, engine: PriceFeedEngine) -> None:
        """Non-2xx responses raise ReporterError."""
        client = make_client(lambda request: httpx.Response(404, text="NotFound"))
        reporter = PriceReporter(engine, SOURCE, client=client)

        with pytest.raises(ReporterError, match="HTTP 404"):
            asyncio.run(reporter.fetch("STX"))

    def test_fetch_missing_price(self, engine: PriceFeedEngine) -> None:
        """Responses without a price raise ReporterError."""
        client = make_client(lambda request: httpx.Response(200, json={"message": "x"}))
        reporter = PriceReporter(engine, SOURCE, client=client)

        with pytest.raises(ReporterError, match="Failed to parse"):
            asyncio.run(reporter.fetch("STX"))

    def test_fetch_network_error(self, engine: PriceFeedEngine) -> None:
        """Connection failures raise ReporterError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        reporter = PriceReporter(engine, SOURCE, client=make_client(handler))
        with pytest.raises(ReporterError, match="Request failed"):
            asyncio.run(reporter.fetch("STX"))


class TestReport:
    """Test fetching and submitting."""

    def test_report_submits_scaled_price(self, engine: PriceFeedEngine) -> None:
        """report() submits the scaled ticker price with the reporter's weight."""
        reporter = PriceReporter(
            engine, SOURCE, weight=40, client=make_client(ticker("1.85"))
        )

        assert asyncio.run(reporter.report("STX")) == 1_850_000
        quote = engine.get_source_quote("STX", SOURCE)
        assert quote.price == 1_850_000
        assert quote.weight == 40
        assert engine.get_price("STX") == 1_850_000

    def test_report_fetch_failure_returns_none(self, engine: PriceFeedEngine) -> None:
        """Fetch failures are logged and nothing is submitted."""
        client = make_client(lambda request: httpx.Response(500, text="oops"))
        reporter = PriceReporter(engine, SOURCE, client=client)

        assert asyncio.run(reporter.report("STX")) is None
        assert engine.get_source_quote("STX", SOURCE) is None

    def test_report_price_rounds_to_zero(self, engine: PriceFeedEngine) -> None:
        """Prices too small for the configured decimals are not submitted."""
        reporter = PriceReporter(
            engine, SOURCE, decimals=2, client=make_client(ticker("0.001"))
        )

        assert asyncio.run(reporter.report("SHIB")) is None
        assert engine.get_source_quote("SHIB", SOURCE) is None

    def test_report_unauthorized_propagates(self, engine: PriceFeedEngine) -> None:
        """Engine rejections are not swallowed."""
        reporter = PriceReporter(engine, "stranger", client=make_client(ticker("1.85")))

        with pytest.raises(NotAuthorized):
            asyncio.run(reporter.report("STX"))


class TestSharedClient:
    """Test shared client lifecycle."""

    def test_shared_client_reused_and_closed(self) -> None:
        """The shared client is created once and can be closed."""

        async def scenario() -> None:
            first = PriceReporter.get_shared_client()
            assert PriceReporter.get_shared_client() is first
            await PriceReporter.close_shared_client()
            assert first.is_closed
            assert PriceReporter._shared_client is None

        asyncio.run(scenario())
