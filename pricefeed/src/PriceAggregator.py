"""PriceAggregator: Weighted average over active, fresh quotes.

Algorithm:
    1. Skip paused quotes
    2. Skip stale quotes (current_height - quote.height > staleness_threshold)
    3. Fail with insufficient_sources if fewer than min_sources remain
    4. Return sum(price * weight) // sum(weight), folded in the order the
       quotes were given

.. code-block:: python

    >>> aggregator = PriceAggregator(min_sources=2, staleness_threshold=120)
    >>> quotes = {
    ...     "s1": Quote(price=100, weight=30, height=10),
    ...     "s2": Quote(price=200, weight=10, height=10),
    ...     "old": Quote(price=999, weight=100, height=0),
    ... }
    >>> result = aggregator.aggregate(quotes, current_height=125)
    >>> result.price
    125
    >>> result.metadata["excluded"]
    {'old': 'stale'}
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from dataclasses import dataclass
from typing import TypedDict

from .QuoteStore import Quote

DEFAULT_MIN_SOURCES = 1
DEFAULT_STALENESS_THRESHOLD = 120


class AggregationError(TypedDict, total=False):
    """Error information when aggregation fails.

    :ivar error: Error type identifier.
    :ivar available: Number of quotes that qualified.
    :ivar required: Configured minimum number of sources.
    :ivar excluded: Dict of sources skipped, with the reason.
    """

    error: str
    available: int
    required: int
    excluded: dict[Hashable, str]


class AggregationMetadata(TypedDict, total=False):
    """Metadata about a successful aggregation.

    :ivar sources: Sources used in the final calculation, in fold order.
    :ivar excluded: Dict of sources skipped, with the reason.
    :ivar count: Number of quotes summed.
    :ivar total_weight: Sum of the weights of the summed quotes.
    :ivar freshest_height: Highest submission height among the summed quotes.
    """

    sources: list[Hashable]
    excluded: dict[Hashable, str]
    count: int
    total_weight: int
    freshest_height: int


@dataclass
class AggregationResult:
    """Result of price aggregation.

    :ivar price: Aggregated price, or None if aggregation failed.
    :ivar metadata: Additional information about the aggregation.
    """

    price: int | None
    metadata: AggregationMetadata | AggregationError

    @property
    def success(self) -> bool:
        """Check if aggregation was successful."""
        return self.price is not None

    @property
    def error(self) -> str | None:
        """Get error type if aggregation failed."""
        if self.price is None:
            return self.metadata.get("error")
        return None

    @property
    def source_count(self) -> int:
        """Number of quotes that contributed (0 on failure)."""
        if self.price is None:
            return 0
        return self.metadata.get("count", 0)


class PriceAggregator:
    """Combines per-source quotes into a single weighted price.

    :ivar min_sources: Minimum qualifying quotes required.
    :ivar staleness_threshold: Maximum quote age in height units.
    """

    def __init__(
        self,
        min_sources: int = DEFAULT_MIN_SOURCES,
        staleness_threshold: int = DEFAULT_STALENESS_THRESHOLD,
    ) -> None:
        """Initialize the aggregator.

        :param min_sources: Minimum number of fresh, active quotes required.
        :param staleness_threshold: Maximum age of a quote, in height units,
            for it to count.
        :raises ValueError: If parameters are invalid.
        """
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        if staleness_threshold < 1:
            raise ValueError("staleness_threshold must be at least 1")

        self.min_sources = min_sources
        self.staleness_threshold = staleness_threshold

    def is_fresh(self, height: int, current_height: int) -> bool:
        """Check whether something recorded at ``height`` is still within the window.

        :param height: Height at which the value was recorded.
        :param current_height: Current clock height.
        :returns: True if current_height - height <= staleness_threshold.
        """
        return current_height - height <= self.staleness_threshold

    def aggregate(
        self,
        quotes: Mapping[Hashable, Quote],
        *,
        current_height: int,
    ) -> AggregationResult:
        """Aggregate quotes into a weight-weighted average price.

        :param quotes: Mapping of source to quote. Iteration order is the
            fold order, so callers pass quotes in source registration order.
        :param current_height: Current clock height for the freshness check.
        :returns: AggregationResult with price and metadata, or None price
            with error info.
        """
        excluded: dict[Hashable, str] = {}
        contributing: list[tuple[Hashable, Quote]] = []

        for source, quote in quotes.items():
            if not quote.active:
                excluded[source] = "paused"
            elif not self.is_fresh(quote.height, current_height):
                excluded[source] = "stale"
            else:
                contributing.append((source, quote))

        if len(contributing) < self.min_sources:
            return AggregationResult(
                price=None,
                metadata={
                    "error": "insufficient_sources",
                    "available": len(contributing),
                    "required": self.min_sources,
                    "excluded": excluded,
                },
            )

        weighted_sum = 0
        total_weight = 0
        for _, quote in contributing:
            weighted_sum += quote.price * quote.weight
            total_weight += quote.weight

        return AggregationResult(
            price=weighted_sum // total_weight,
            metadata={
                "sources": [source for source, _ in contributing],
                "excluded": excluded,
                "count": len(contributing),
                "total_weight": total_weight,
                "freshest_height": max(quote.height for _, quote in contributing),
            },
        )
