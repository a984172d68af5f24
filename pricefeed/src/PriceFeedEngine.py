"""PriceFeedEngine: Authorized multi-source price feed with staleness checks.

This module owns every table of the price feed and exposes the operations
that mutate or read them:

    - Owner-gated administration (authorization, min sources, staleness
      threshold, pausing a source's quote)
    - Quote submission by authorized sources, followed by synchronous
      recomputation of the asset's aggregate
    - Staleness-checked price reads and cross-asset conversion

Each operation validates everything before mutating anything, so a failed
call leaves no partial state behind. The only exception is submission:
the quote is kept even when the following aggregation cannot be formed.

.. code-block:: python

    >>> clock = ManualClock(1)
    >>> engine = PriceFeedEngine(owner="owner", clock=clock)
    >>> engine.authorize_source("owner", "s1")
    >>> engine.submit("s1", "STX", 1_850_000, 50)
    'STX'
    >>> engine.get_price("STX")
    1850000
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

from .AuthorizationRegistry import AuthorizationRegistry, OwnerCapability
from .Clock import Clock
from .errors import (
    AlreadyExists,
    InsufficientSources,
    InvalidPrice,
    NotAuthorized,
    SourceNotFound,
    StalePrice,
)
from .PriceAggregator import (
    DEFAULT_MIN_SOURCES,
    DEFAULT_STALENESS_THRESHOLD,
    PriceAggregator,
)
from .QuoteStore import Quote, QuoteStore, validate_asset, validate_quote

logger = logging.getLogger(__name__)

MAX_EVENTS = 1000


@dataclass(frozen=True)
class AggregatePrice:
    """Last computed trusted price for an asset.

    :ivar price: Weighted average price.
    :ivar last_update_height: Height at which it was computed.
    :ivar source_count: Number of quotes that contributed.
    """

    price: int
    last_update_height: int
    source_count: int


@dataclass(frozen=True)
class PriceFeedEvent:
    """Domain event emitted by a mutating operation.

    :ivar name: Event name (e.g. "quote_submitted").
    :ivar height: Clock height when the event was emitted.
    :ivar data: Event payload.
    """

    name: str
    height: int
    data: dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[PriceFeedEvent], None]


def _require_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidPrice(f"{name} must be a positive integer, got {value!r}")
    return value


class PriceFeedEngine:
    """Price feed aggregation engine.

    :ivar clock: Injected height source.
    :ivar capability: Owner capability gating administrative operations.
    :ivar registry: Source authorization flags.
    :ivar quotes: Latest quote per (asset, source).
    :ivar aggregator: Weighted aggregation with the current parameters.
    :ivar events: The most recent events, oldest first, capped at max_events.
    """

    def __init__(
        self,
        owner: Hashable,
        clock: Clock,
        min_sources: int = DEFAULT_MIN_SOURCES,
        staleness_threshold: int = DEFAULT_STALENESS_THRESHOLD,
        max_events: int = MAX_EVENTS,
    ) -> None:
        """Initialize an empty engine.

        :param owner: Identity holding the owner capability.
        :param clock: Monotonic height source.
        :param min_sources: Minimum qualifying quotes for an aggregate (default: 1).
        :param staleness_threshold: Maximum age in height units (default: 120).
        :param max_events: Number of recent events kept in ``events`` (default: 1000).
        :raises ValueError: If min_sources, staleness_threshold or max_events is below 1.
        """
        if max_events < 1:
            raise ValueError("max_events must be at least 1")

        self.clock = clock
        self.capability = OwnerCapability(owner)
        self.registry = AuthorizationRegistry(self.capability)
        self.quotes = QuoteStore()
        self.aggregator = PriceAggregator(
            min_sources=min_sources,
            staleness_threshold=staleness_threshold,
        )
        self._aggregates: dict[str, AggregatePrice] = {}
        self.events: deque[PriceFeedEvent] = deque(maxlen=max_events)
        self._listeners: list[EventListener] = []

    @property
    def owner(self) -> Hashable:
        return self.capability.owner

    @property
    def min_sources(self) -> int:
        return self.aggregator.min_sources

    @property
    def staleness_threshold(self) -> int:
        return self.aggregator.staleness_threshold

    def subscribe(self, listener: EventListener) -> None:
        """Register a callback invoked for every emitted event.

        :param listener: Callable receiving a PriceFeedEvent.
        """
        self._listeners.append(listener)

    def _emit(self, *events: PriceFeedEvent) -> None:
        # Only called once every state change of the operation has been applied.
        self.events.extend(events)
        for event in events:
            for listener in self._listeners:
                listener(event)

    # Administration

    def authorize_source(self, caller: Hashable, source: Hashable) -> None:
        """Authorize a source to submit quotes. Owner only, idempotent.

        :raises NotAuthorized: If caller is not the owner.
        """
        if self.registry.authorize(caller, source):
            self._emit(
                PriceFeedEvent("source_authorized", self.clock.height(), {"source": source})
            )

    def deauthorize_source(self, caller: Hashable, source: Hashable) -> None:
        """Revoke a source's authorization. Owner only, idempotent.

        Quotes from a deauthorized source stay stored but no longer count
        toward aggregation.

        :raises NotAuthorized: If caller is not the owner.
        """
        if self.registry.deauthorize(caller, source):
            self._emit(
                PriceFeedEvent("source_deauthorized", self.clock.height(), {"source": source})
            )

    def set_min_sources(self, caller: Hashable, min_sources: int) -> None:
        """Set the minimum number of quotes an aggregate needs.

        :param caller: Identity performing the change.
        :param min_sources: New minimum, at least 1.
        :raises NotAuthorized: If caller is not the owner.
        :raises InvalidPrice: If min_sources is zero or not a positive int.
        """
        self.capability.require(caller, "set min sources")
        self.aggregator.min_sources = _require_positive_int(min_sources, "min_sources")
        logger.info(f"Min sources set to {min_sources}")
        self._emit(
            PriceFeedEvent("min_sources_set", self.clock.height(), {"min_sources": min_sources})
        )

    def set_staleness_threshold(self, caller: Hashable, threshold: int) -> None:
        """Set the maximum age, in height units, of a usable quote or aggregate.

        :param caller: Identity performing the change.
        :param threshold: New threshold, at least 1.
        :raises NotAuthorized: If caller is not the owner.
        :raises InvalidPrice: If threshold is zero or not a positive int.
        """
        self.capability.require(caller, "set staleness threshold")
        self.aggregator.staleness_threshold = _require_positive_int(
            threshold, "staleness_threshold"
        )
        logger.info(f"Staleness threshold set to {threshold}")
        self._emit(
            PriceFeedEvent(
                "staleness_threshold_set", self.clock.height(), {"threshold": threshold}
            )
        )

    def pause_source(self, caller: Hashable, asset: str, source: Hashable) -> None:
        """Exclude a source's quote for an asset from future aggregation.

        The quote keeps its price, weight and height, and the cached
        aggregate is left as it is. Resubmitting reactivates the quote.

        :param caller: Identity performing the change.
        :param asset: Asset identifier.
        :param source: Source whose quote is paused.
        :raises NotAuthorized: If caller is not the owner.
        :raises SourceNotFound: If the source never quoted the asset.
        """
        self.capability.require(caller, "pause sources")
        self.quotes.pause(asset, source)
        logger.info(f"{asset}: source {source} paused")
        self._emit(
            PriceFeedEvent(
                "source_paused", self.clock.height(), {"asset": asset, "source": source}
            )
        )

    # Submission

    def submit(self, caller: Hashable, asset: str, price: int, weight: int) -> str:
        """Submit or replace the caller's quote for an asset.

        The asset's aggregate is recomputed immediately over the active,
        fresh quotes of currently authorized sources; quotes left behind by
        a deauthorized source stay stored but are not counted. If too few
        sources qualify, the quote is still stored and the previous
        aggregate stays.

        Listeners are notified of ``quote_submitted`` and, when the
        aggregate changed, ``aggregate_updated`` only after both the quote
        and the aggregate have been written.

        :param caller: Submitting source identity.
        :param asset: Asset identifier.
        :param price: Price, a positive integer.
        :param weight: Weight between 1 and 100.
        :returns: The asset identifier.
        :raises NotAuthorized: If the caller is not an authorized source.
        :raises InvalidPrice: If price is zero or weight is out of range.
        :raises InvalidAsset: If the asset identifier is malformed.
        """
        if not self.registry.is_authorized(caller):
            raise NotAuthorized(f"{caller} is not an authorized source")
        validate_quote(price, weight)
        validate_asset(asset)

        height = self.clock.height()
        self.quotes.put(asset, caller, price, weight, height)
        logger.debug(f"{asset}: quote from {caller} price={price} weight={weight} at {height}")

        events = [
            PriceFeedEvent(
                "quote_submitted",
                height,
                {"source": caller, "asset": asset, "price": price, "weight": weight},
            )
        ]
        try:
            aggregate = self._recompute(asset, height)
        except InsufficientSources as e:
            logger.warning(f"{asset}: Aggregation failed ({e.kind}): {e}")
        else:
            events.append(
                PriceFeedEvent(
                    "aggregate_updated",
                    height,
                    {
                        "asset": asset,
                        "price": aggregate.price,
                        "source_count": aggregate.source_count,
                    },
                )
            )

        self._emit(*events)
        return asset

    def _ordered_quotes(self, asset: str) -> dict[Hashable, Quote]:
        """Get the asset's quotes from authorized sources in registration order."""
        submitted = self.quotes.quotes_for(asset)
        return {
            source: submitted[source]
            for source, authorized in self.registry.sources()
            if authorized and source in submitted
        }

    def _recompute(self, asset: str, height: int) -> AggregatePrice:
        """Fold the asset's qualifying quotes and store the new aggregate.

        Quotes from deauthorized sources are skipped along with paused and
        stale ones. Emits nothing; the caller publishes the events.

        :raises InsufficientSources: If fewer than min_sources quotes qualify.
        """
        result = self.aggregator.aggregate(
            self._ordered_quotes(asset), current_height=height
        )
        if not result.success:
            raise InsufficientSources(
                asset, result.metadata.get("available", 0), self.min_sources
            )

        assert result.price is not None
        aggregate = AggregatePrice(
            price=result.price,
            last_update_height=height,
            source_count=result.source_count,
        )
        self._aggregates[asset] = aggregate

        excluded = result.metadata.get("excluded", {})
        log_msg = f"{asset}: {aggregate.price} (weighted over {aggregate.source_count} source(s)"
        if excluded:
            log_msg += f", excluded: {excluded}"
        log_msg += ")"
        logger.info(log_msg)
        return aggregate

    # Reads

    def get_price(self, asset: str) -> int:
        """Get the aggregate price for an asset if it is fresh.

        :param asset: Asset identifier.
        :returns: Aggregate price.
        :raises SourceNotFound: If no aggregate was ever formed for the asset.
        :raises StalePrice: If the aggregate is older than the staleness threshold.
        """
        aggregate = self._aggregates.get(asset)
        if aggregate is None:
            raise SourceNotFound(f"No aggregate price for {asset}")
        now = self.clock.height()
        if not self.aggregator.is_fresh(aggregate.last_update_height, now):
            age = now - aggregate.last_update_height
            raise StalePrice(asset, age, self.staleness_threshold)
        return aggregate.price

    def is_price_fresh(self, asset: str) -> bool:
        """Check the aggregate's age without raising.

        :returns: False if the aggregate is missing or stale.
        """
        aggregate = self._aggregates.get(asset)
        if aggregate is None:
            return False
        return self.aggregator.is_fresh(aggregate.last_update_height, self.clock.height())

    def get_price_data(self, asset: str) -> AggregatePrice | None:
        """Get the cached aggregate regardless of its age."""
        return self._aggregates.get(asset)

    def get_source_quote(self, asset: str, source: Hashable) -> Quote | None:
        """Get a source's stored quote for an asset, or None."""
        return self.quotes.get(asset, source)

    def convert(self, asset_from: str, asset_to: str, amount: int) -> int:
        """Convert an amount of one asset into another using fresh aggregates.

        :param asset_from: Asset the amount is denominated in.
        :param asset_to: Asset to convert into.
        :param amount: Non-negative integer amount.
        :returns: amount * price_from // price_to.
        :raises InvalidPrice: If amount is negative or not an int.
        :raises SourceNotFound: If either asset has no aggregate.
        :raises StalePrice: If either aggregate is stale.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidPrice(f"Amount must be a non-negative integer, got {amount!r}")
        price_from = self.get_price(asset_from)
        price_to = self.get_price(asset_to)
        return amount * price_from // price_to

    # Snapshots

    def aggregates(self) -> dict[str, AggregatePrice]:
        """Get a copy of the aggregate table."""
        return dict(self._aggregates)

    def is_empty(self) -> bool:
        """Check whether any quote or aggregate has been stored."""
        return len(self.quotes) == 0 and not self._aggregates

    def restore_tables(
        self,
        authorizations: list[tuple[Hashable, bool]],
        quotes: list[tuple[str, Hashable, Quote]],
        aggregates: dict[str, AggregatePrice],
    ) -> None:
        """Load previously saved tables into an empty engine.

        Values are stored as given; StateStore.from_snapshot validates them first.

        :raises AlreadyExists: If the engine already holds quotes or aggregates.
        """
        if not self.is_empty():
            raise AlreadyExists("Engine already holds price state")
        self.registry.restore(authorizations)
        self.quotes.restore(quotes)
        self._aggregates = dict(aggregates)
