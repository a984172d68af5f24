"""StateStore: CBOR snapshots of the price feed tables.

A snapshot holds the three persisted tables (aggregates by asset, quotes by
(asset, source), authorization flags by source) plus the owner and the two
tunable scalars. Events are not persisted.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import cbor2

from .Clock import Clock
from .PriceFeedEngine import AggregatePrice, PriceFeedEngine
from .errors import PriceFeedError
from .QuoteStore import Quote, validate_asset, validate_quote

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def to_snapshot(engine: PriceFeedEngine) -> dict[str, Any]:
    """Serialize an engine's persisted state to plain CBOR-encodable values.

    :param engine: Engine to snapshot.
    :returns: Snapshot dict.
    """
    return {
        "version": SNAPSHOT_VERSION,
        "owner": engine.owner,
        "min_sources": engine.min_sources,
        "staleness_threshold": engine.staleness_threshold,
        "authorizations": [[source, flag] for source, flag in engine.registry.sources()],
        "quotes": [
            [asset, source, q.price, q.weight, q.height, q.active]
            for asset, source, q in engine.quotes.items()
        ],
        "aggregates": [
            [asset, a.price, a.last_update_height, a.source_count]
            for asset, a in engine.aggregates().items()
        ],
    }


def _require_int(value: Any, name: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{name} must be an integer >= {minimum}, got {value!r}")
    return value


def _restore_quote(row: list[Any]) -> tuple[str, Any, Quote]:
    asset, source, price, weight, height, active = row
    validate_asset(asset)
    validate_quote(price, weight)
    _require_int(height, "quote height", 0)
    if not isinstance(active, bool):
        raise ValueError(f"quote active flag must be a bool, got {active!r}")
    return asset, source, Quote(price=price, weight=weight, height=height, active=active)


def _restore_aggregate(row: list[Any]) -> tuple[str, AggregatePrice]:
    asset, price, height, count = row
    validate_asset(asset)
    return asset, AggregatePrice(
        price=_require_int(price, "aggregate price", 1),
        last_update_height=_require_int(height, "aggregate height", 0),
        source_count=_require_int(count, "aggregate source count", 1),
    )


def from_snapshot(snapshot: dict[str, Any], clock: Clock) -> PriceFeedEngine:
    """Rebuild an engine from a snapshot dict.

    Scalars, quotes and aggregates are checked against the same rules the
    engine enforces on submission.

    :param snapshot: Dict produced by to_snapshot().
    :param clock: Clock for the rebuilt engine.
    :returns: Engine holding the saved state.
    :raises ValueError: If the snapshot version is unknown, fields are missing
        or any restored value is invalid.
    """
    version = snapshot.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version!r}")

    try:
        engine = PriceFeedEngine(
            owner=snapshot["owner"],
            clock=clock,
            min_sources=_require_int(snapshot["min_sources"], "min_sources", 1),
            staleness_threshold=_require_int(
                snapshot["staleness_threshold"], "staleness_threshold", 1
            ),
        )
        engine.restore_tables(
            authorizations=[(source, flag) for source, flag in snapshot["authorizations"]],
            quotes=[_restore_quote(row) for row in snapshot["quotes"]],
            aggregates=dict(_restore_aggregate(row) for row in snapshot["aggregates"]),
        )
    except (KeyError, TypeError, ValueError, PriceFeedError) as e:
        raise ValueError(f"Malformed snapshot: {e}") from e
    return engine


def save(engine: PriceFeedEngine, path: str | os.PathLike) -> None:
    """Write an engine snapshot to a file.

    The file is replaced atomically so a crash never leaves a truncated snapshot.

    :param engine: Engine to save.
    :param path: Destination file path.
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "wb") as file:
        cbor2.dump(to_snapshot(engine), file)
    os.replace(tmp_path, path)
    logger.debug("Saved price feed state to %s", path)


def load(path: str | os.PathLike, clock: Clock) -> PriceFeedEngine:
    """Read an engine snapshot from a file.

    :param path: Snapshot file path.
    :param clock: Clock for the loaded engine.
    :returns: Engine holding the saved state.
    :raises ValueError: If the file is not a valid snapshot.
    """
    with open(path, "rb") as file:
        try:
            snapshot = cbor2.load(file)
        except cbor2.CBORDecodeError as e:
            raise ValueError(f"Invalid snapshot file {path}: {e}") from e
    if not isinstance(snapshot, dict):
        raise ValueError(f"Invalid snapshot file {path}: expected a map")
    logger.debug("Loaded price feed state from %s", path)
    return from_snapshot(snapshot, clock)
