"""PriceReporter: Feeds exchange ticker prices into the engine as one source.

A reporter owns a source identity and a weight. Each report() call fetches
the spot price for an asset from the Coinbase Exchange ticker, scales it to
an integer with a fixed number of decimals and submits it to the engine.

.. code-block:: python

    reporter = PriceReporter(engine, source="0x...", weight=50)
    price = await reporter.report("STX", quote="usd")
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, ClassVar

import httpx

if TYPE_CHECKING:
    from .PriceFeedEngine import PriceFeedEngine

logger = logging.getLogger(__name__)

# Number of decimals used to turn a ticker price into an integer quote.
DEFAULT_DECIMALS = 6


class ReporterError(Exception):
    """Raised when a ticker price cannot be fetched or parsed."""

    pass


class PriceReporter:
    """Fetches ticker prices and submits them under a single source identity.

    :cvar BASE_URL: Ticker API base URL.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar engine: Engine receiving submissions.
    :ivar source: Identity the reporter submits as.
    :ivar weight: Weight attached to every submitted quote.
    :ivar decimals: Decimal places kept when scaling prices to integers.
    """

    BASE_URL = "https://api.exchange.coinbase.com"
    DEFAULT_TIMEOUT = 10.0

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    def __init__(
        self,
        engine: PriceFeedEngine,
        source: Hashable,
        weight: int = 50,
        decimals: int = DEFAULT_DECIMALS,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the reporter.

        :param engine: Engine receiving submissions.
        :param source: Source identity; must be authorized in the engine.
        :param weight: Quote weight between 1 and 100 (default: 50).
        :param decimals: Decimals used when scaling prices (default: 6).
        :param client: Optional HTTP client. The shared client is used if omitted.
        :param timeout: Request timeout in seconds (default: 10).
        :raises ValueError: If decimals is negative.
        """
        if decimals < 0:
            raise ValueError("decimals must be non-negative")
        self.engine = engine
        self.source = source
        self.weight = weight
        self.decimals = decimals
        self.client = client
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        :returns: Shared httpx.AsyncClient instance.
        """
        if cls._shared_client is None or cls._shared_client.is_closed:
            cls._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                follow_redirects=True,
            )
        return cls._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if cls._shared_client is not None and not cls._shared_client.is_closed:
            await cls._shared_client.aclose()
            cls._shared_client = None

    def scale(self, price: Decimal) -> int:
        """Scale a decimal price to the integer units submitted to the engine.

        Digits beyond ``decimals`` are truncated.

        :param price: Ticker price.
        :returns: Integer price.
        """
        return int(price * (10 ** self.decimals))

    async def fetch(self, asset: str, quote: str = "usd") -> Decimal:
        """Fetch the spot price of an asset from the ticker endpoint.

        :param asset: Base asset symbol (e.g., "STX", "btc").
        :param quote: Quote currency symbol (default: "usd").
        :returns: Ticker price.
        :raises ReporterError: On HTTP, network or parse failures.
        """
        symbol = f"{asset.upper()}-{quote.upper()}"
        url = f"{self.BASE_URL}/products/{symbol}/ticker"
        client = self.client or self.get_shared_client()

        try:
            response = await client.get(url, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ReporterError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise ReporterError(f"Request failed: {e}") from e

        if not response.is_success:
            raise ReporterError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            return Decimal(str(data["price"]))
        except (KeyError, ValueError, TypeError, InvalidOperation) as e:
            raise ReporterError(f"Failed to parse response for {symbol}: {e}") from e

    async def report(self, asset: str, quote: str = "usd") -> int | None:
        """Fetch a ticker price and submit it to the engine.

        Fetch failures are logged and reported as None. Engine errors
        (e.g. the reporter losing authorization) propagate.

        :param asset: Asset identifier, also used as the ticker base symbol.
        :param quote: Quote currency symbol (default: "usd").
        :returns: The submitted integer price, or None if nothing was submitted.
        """
        try:
            price = await self.fetch(asset, quote)
        except ReporterError as e:
            logger.warning(f"[{self.source}] Failed to fetch {asset}/{quote}: {e}")
            return None

        scaled = self.scale(price)
        if scaled <= 0:
            logger.warning(f"[{self.source}] Ticker price for {asset}/{quote} rounds to zero: {price}")
            return None

        self.engine.submit(self.source, asset, scaled, self.weight)
        logger.info(f"[{self.source}] Reported {asset}={scaled} (weight {self.weight})")
        return scaled
