"""QuoteStore: Latest quote per (asset, source).

Exactly one quote exists per pair. A new submission overwrites the previous
quote in place; no history is retained.
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, replace

from .errors import InvalidAsset, InvalidPrice, SourceNotFound

MIN_WEIGHT = 1
MAX_WEIGHT = 100
MAX_ASSET_LENGTH = 12


@dataclass(frozen=True)
class Quote:
    """A single source's latest price for an asset.

    :ivar price: Submitted price in the asset's integer units.
    :ivar weight: Relative influence in the weighted average (1-100).
    :ivar height: Height at which the quote was submitted.
    :ivar active: False once the owner has paused the source for this asset.
    """

    price: int
    weight: int
    height: int
    active: bool = True


def validate_asset(asset: str) -> str:
    """Validate an asset identifier.

    :param asset: Asset identifier such as "STX" or "BTC".
    :returns: The identifier unchanged.
    :raises InvalidAsset: If empty, longer than MAX_ASSET_LENGTH, or not
        printable ASCII without whitespace.
    """
    if not isinstance(asset, str) or not asset:
        raise InvalidAsset("Asset identifier must be a non-empty string")
    if len(asset) > MAX_ASSET_LENGTH:
        raise InvalidAsset(
            f"Asset identifier '{asset}' exceeds {MAX_ASSET_LENGTH} characters"
        )
    if not asset.isascii() or not asset.isprintable() or any(c.isspace() for c in asset):
        raise InvalidAsset(f"Asset identifier {asset!r} must be printable ASCII")
    return asset


def validate_quote(price: int, weight: int) -> None:
    """Check the numeric bounds of a quote.

    :param price: Proposed price.
    :param weight: Proposed weight.
    :raises InvalidPrice: If price is not a positive int or weight is out of range.
    """
    if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
        raise InvalidPrice(f"Price must be a positive integer, got {price!r}")
    if (
        isinstance(weight, bool)
        or not isinstance(weight, int)
        or weight < MIN_WEIGHT
        or weight > MAX_WEIGHT
    ):
        raise InvalidPrice(
            f"Weight must be between {MIN_WEIGHT} and {MAX_WEIGHT}, got {weight!r}"
        )


class QuoteStore:
    """In-memory table of quotes keyed by (asset, source)."""

    def __init__(self) -> None:
        self._quotes: dict[tuple[str, Hashable], Quote] = {}

    def __len__(self) -> int:
        return len(self._quotes)

    def put(self, asset: str, source: Hashable, price: int, weight: int, height: int) -> Quote:
        """Write or overwrite a source's quote for an asset.

        Submission always (re)activates the quote.

        :param asset: Asset identifier.
        :param source: Submitting source identity.
        :param price: Quote price.
        :param weight: Quote weight.
        :param height: Height of the submission.
        :returns: The stored quote.
        """
        validate_quote(price, weight)
        quote = Quote(price=price, weight=weight, height=height, active=True)
        self._quotes[(asset, source)] = quote
        return quote

    def get(self, asset: str, source: Hashable) -> Quote | None:
        """Look up a quote.

        :returns: The quote, or None if the pair never submitted.
        """
        return self._quotes.get((asset, source))

    def pause(self, asset: str, source: Hashable) -> Quote:
        """Deactivate a quote while keeping its price, weight and height.

        :param asset: Asset identifier.
        :param source: Source identity.
        :returns: The paused quote.
        :raises SourceNotFound: If no quote exists for the pair.
        """
        quote = self._quotes.get((asset, source))
        if quote is None:
            raise SourceNotFound(f"No quote from {source} for {asset}")
        paused = replace(quote, active=False)
        self._quotes[(asset, source)] = paused
        return paused

    def quotes_for(self, asset: str) -> dict[Hashable, Quote]:
        """Get every quote submitted for an asset.

        :param asset: Asset identifier.
        :returns: Dict mapping source identity to its quote.
        """
        return {
            source: quote
            for (quoted_asset, source), quote in self._quotes.items()
            if quoted_asset == asset
        }

    def items(self) -> list[tuple[str, Hashable, Quote]]:
        """List all (asset, source, quote) entries."""
        return [(asset, source, quote) for (asset, source), quote in self._quotes.items()]

    def restore(self, entries: list[tuple[str, Hashable, Quote]]) -> None:
        """Replace the table with previously saved entries."""
        self._quotes = {(asset, source): quote for asset, source, quote in entries}
