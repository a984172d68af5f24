"""Price feed error hierarchy.

Every failure raised by the engine derives from PriceFeedError and carries a
stable ``kind`` tag so callers can branch on the failure without matching
on message text.

.. code-block:: python

    >>> try:
    ...     engine.get_price("STX")
    ... except PriceFeedError as e:
    ...     e.kind
    'source_not_found'
"""

from typing import ClassVar


class PriceFeedError(Exception):
    """Base exception for price feed errors.

    :cvar kind: Error type identifier.
    """

    kind: ClassVar[str] = "price_feed_error"


class NotAuthorized(PriceFeedError):
    """Raised when the caller lacks the capability for an operation."""

    kind = "not_authorized"


class InvalidPrice(PriceFeedError):
    """Raised for a zero price, an out-of-range weight or a zero parameter."""

    kind = "invalid_price"


class StalePrice(PriceFeedError):
    """Raised when an aggregate is older than the staleness threshold.

    :ivar asset: Asset whose aggregate is stale.
    :ivar age: Height units elapsed since the aggregate was computed.
    """

    kind = "stale_price"

    def __init__(self, asset: str, age: int, threshold: int):
        """Initialize the staleness error.

        :param asset: Asset whose aggregate is stale.
        :param age: Height units elapsed since the last update.
        :param threshold: Configured staleness threshold.
        """
        self.asset = asset
        self.age = age
        super().__init__(
            f"Price for {asset} is stale: age {age} exceeds threshold {threshold}"
        )


class SourceNotFound(PriceFeedError):
    """Raised when no aggregate or quote exists for the requested key."""

    kind = "source_not_found"


class AlreadyExists(PriceFeedError):
    """Raised when an operation would overwrite state that must not be replaced."""

    kind = "already_exists"


class InsufficientSources(PriceFeedError):
    """Raised when fewer fresh, active quotes exist than min_sources requires.

    :ivar available: Number of quotes that qualified.
    :ivar required: Configured minimum.
    """

    kind = "insufficient_sources"

    def __init__(self, asset: str, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"{asset}: {available} qualifying source(s), {required} required"
        )


class InvalidAsset(PriceFeedError):
    """Raised when an asset identifier is empty, too long or not printable ASCII."""

    kind = "invalid_asset"
