"""Unit tests for StateStore snapshots."""

from pathlib import Path

import cbor2
import pytest

from pricefeed.src import StateStore
from pricefeed.src.Clock import ManualClock
from pricefeed.src.PriceFeedEngine import AggregatePrice, PriceFeedEngine
from pricefeed.src.QuoteStore import Quote


def snapshot_with(**tables) -> dict:
    snapshot = {
        "version": 1,
        "owner": "owner",
        "min_sources": 1,
        "staleness_threshold": 60,
        "authorizations": [["s1", True]],
        "quotes": [["STX", "s1", 1_850_000, 50, 10, True]],
        "aggregates": [["STX", 1_850_000, 10, 1], ["USD", 1_000_000, 10, 1]],
    }
    snapshot.update(tables)
    return snapshot


@pytest.fixture
def engine() -> PriceFeedEngine:
    clock = ManualClock(500)
    engine = PriceFeedEngine(owner="owner", clock=clock, min_sources=1, staleness_threshold=60)
    engine.authorize_source("owner", "s2")
    engine.authorize_source("owner", "s1")
    engine.submit("s1", "STX", 1_850_000, 50)
    clock.advance(3)
    engine.submit("s2", "STX", 1_900_000, 25)
    engine.pause_source("owner", "STX", "s1")
    engine.deauthorize_source("owner", "s2")
    engine.set_min_sources("owner", 2)
    return engine


class TestSnapshot:
    """Test snapshot dicts."""

    def test_snapshot_contents(self, engine: PriceFeedEngine) -> None:
        """The snapshot holds every persisted table and scalar."""
        snapshot = StateStore.to_snapshot(engine)

        assert snapshot["version"] == StateStore.SNAPSHOT_VERSION
        assert snapshot["owner"] == "owner"
        assert snapshot["min_sources"] == 2
        assert snapshot["staleness_threshold"] == 60
        assert snapshot["authorizations"] == [["s2", False], ["s1", True]]
        assert ["STX", "s1", 1_850_000, 50, 500, False] in snapshot["quotes"]
        assert snapshot["aggregates"] == [["STX", 1_866_666, 503, 2]]

    def test_rebuild_preserves_state(self, engine: PriceFeedEngine) -> None:
        """An engine rebuilt from a snapshot answers reads identically."""
        clock = ManualClock(510)
        restored = StateStore.from_snapshot(StateStore.to_snapshot(engine), clock)

        assert restored.owner == "owner"
        assert restored.min_sources == 2
        assert restored.staleness_threshold == 60
        assert restored.get_source_quote("STX", "s1") == Quote(
            price=1_850_000, weight=50, height=500, active=False
        )
        assert restored.get_price_data("STX") == AggregatePrice(
            price=1_866_666, last_update_height=503, source_count=2
        )
        assert restored.get_price("STX") == 1_866_666
        assert not restored.registry.is_authorized("s2")
        assert [s for s, _ in restored.registry.sources()] == ["s2", "s1"]

    def test_unknown_version(self) -> None:
        """Unknown snapshot versions are rejected."""
        with pytest.raises(ValueError, match="Unsupported snapshot version"):
            StateStore.from_snapshot({"version": 99}, ManualClock())

    def test_missing_fields(self) -> None:
        """Snapshots missing tables are rejected."""
        with pytest.raises(ValueError, match="Malformed snapshot"):
            StateStore.from_snapshot({"version": 1, "owner": "o"}, ManualClock())

    def test_valid_tables_restore(self) -> None:
        """A well-formed snapshot supports conversion after loading."""
        engine = StateStore.from_snapshot(snapshot_with(), ManualClock(20))
        assert engine.convert("STX", "USD", 5) == 9

    @pytest.mark.parametrize(
        "quote",
        [
            ["STX", "s1", 0, 50, 10, True],
            ["STX", "s1", 1_850_000, 500, 10, True],
            ["STX", "s1", 1_850_000, 50, -1, True],
            ["STX", "s1", 1_850_000, 50, 10, "yes"],
            ["", "s1", 1_850_000, 50, 10, True],
            ["STX", "s1", 1_850_000, 50],
        ],
    )
    def test_invalid_quote_rejected(self, quote: list) -> None:
        """Quotes breaking submission rules are rejected."""
        with pytest.raises(ValueError, match="Malformed snapshot"):
            StateStore.from_snapshot(snapshot_with(quotes=[quote]), ManualClock())

    @pytest.mark.parametrize(
        "aggregate",
        [
            ["USD", 0, 10, 1],
            ["USD", -5, 10, 1],
            ["USD", 1_000_000, 10, 0],
            ["USD", 1_000_000, "10", 1],
            ["USD", True, 10, 1],
        ],
    )
    def test_invalid_aggregate_rejected(self, aggregate: list) -> None:
        """Aggregates with non-positive prices or bad metadata are rejected."""
        with pytest.raises(ValueError, match="Malformed snapshot"):
            StateStore.from_snapshot(snapshot_with(aggregates=[aggregate]), ManualClock())

    def test_zero_price_tables_rejected(self) -> None:
        """A zero price quote and aggregate cannot be loaded to divide by later."""
        snapshot = snapshot_with(
            quotes=[["STX", "s1", 0, 500, 10, True]],
            aggregates=[["USD", 0, 10, 1]],
        )
        with pytest.raises(ValueError, match="Malformed snapshot"):
            StateStore.from_snapshot(snapshot, ManualClock(10))

    def test_invalid_scalars_rejected(self) -> None:
        """Zero or non-integer scalars are rejected."""
        with pytest.raises(ValueError, match="Malformed snapshot"):
            StateStore.from_snapshot(snapshot_with(min_sources=0), ManualClock())
        with pytest.raises(ValueError, match="Malformed snapshot"):
            StateStore.from_snapshot(snapshot_with(staleness_threshold=1.5), ManualClock())


class TestFiles:
    """Test saving and loading snapshot files."""

    def test_save_and_load(self, engine: PriceFeedEngine, tmp_path: Path) -> None:
        """A saved file loads back into an equivalent engine."""
        path = tmp_path / "state.cbor"
        StateStore.save(engine, path)

        assert path.exists()
        assert not (tmp_path / "state.cbor.tmp").exists()

        loaded = StateStore.load(path, ManualClock(503))
        assert StateStore.to_snapshot(loaded) == StateStore.to_snapshot(engine)

    def test_file_is_cbor(self, engine: PriceFeedEngine, tmp_path: Path) -> None:
        """The file is a plain CBOR map."""
        path = tmp_path / "state.cbor"
        StateStore.save(engine, path)

        with open(path, "rb") as file:
            data = cbor2.load(file)
        assert data["version"] == 1

    def test_load_not_a_map(self, tmp_path: Path) -> None:
        """Files that do not decode to a map are rejected."""
        path = tmp_path / "state.cbor"
        path.write_bytes(cbor2.dumps([1, 2, 3]))

        with pytest.raises(ValueError, match="expected a map"):
            StateStore.load(path, ManualClock())

    def test_load_garbage(self, tmp_path: Path) -> None:
        """Truncated files are rejected."""
        path = tmp_path / "state.cbor"
        path.write_bytes(b"\xa1")

        with pytest.raises(ValueError, match="Invalid snapshot file"):
            StateStore.load(path, ManualClock())
