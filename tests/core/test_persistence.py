"""
Tests for the flat-file state stores.
"""
import json
import os

import pytest

from sniper.core.persistence import JsonStateFile, KnownTokenStore, PersistenceError, PositionStore
from sniper.models.position import ExitReason, Position


TOKEN_A = "TokenAxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"
TOKEN_B = "TokenBxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"


@pytest.fixture
def positions_path(tmp_path):
    return str(tmp_path / "data" / "positions.json")


@pytest.mark.asyncio
async def test_positions_round_trip(positions_path):
    store = PositionStore(positions_path)
    open_position = Position.open(TOKEN_A, 100.0, 50.0, 200.0, 0.1,
                                  entry_timestamp=1_700_000_000.123, symbol="TKA")
    closed = Position.open(TOKEN_B, 2.0, 50.0, 200.0, 0.1, entry_timestamp=1_700_000_000.0)
    closed.close(ExitReason.STOP_LOSS, now=1_700_000_600.0)

    assert await store.save([open_position, closed]) is True
    loaded = {p.token_address: p for p in PositionStore(positions_path).load()}

    assert loaded[TOKEN_A] == open_position
    assert loaded[TOKEN_B].monitoring is False
    assert loaded[TOKEN_B].exit_reason == "stop_loss"


@pytest.mark.asyncio
async def test_positions_file_format(positions_path):
    store = PositionStore(positions_path)
    position = Position.open(TOKEN_A, 100.0, 50.0, 200.0, 0.1, entry_timestamp=1_700_000_000.5)
    await store.save([position])

    with open(positions_path) as f:
        document = json.load(f)

    assert document["lastUpdate"].endswith("Z")
    entry = document["positions"][0]
    assert entry["tokenAddress"] == TOKEN_A
    assert entry["entryTimestamp"] == 1_700_000_000_500
    assert entry["stopLossPrice"] == 50.0
    assert entry["takeProfitPrice"] == 300.0
    assert entry["monitoring"] is True
    assert entry["initialInvestment"] == 0.1


@pytest.mark.asyncio
async def test_save_leaves_no_temporary_files(positions_path):
    store = PositionStore(positions_path)
    for _ in range(3):
        await store.save([])

    assert os.listdir(os.path.dirname(positions_path)) == ["positions.json"]
    assert store.file.write_count == 3


def test_missing_file_loads_empty(positions_path, tmp_path):
    assert PositionStore(positions_path).load() == []
    assert KnownTokenStore(str(tmp_path / "known.json")).load() == set()


def test_corrupt_file_loads_empty(positions_path):
    os.makedirs(os.path.dirname(positions_path))
    with open(positions_path, "w") as f:
        f.write("{not json")

    assert PositionStore(positions_path).load() == []
    with pytest.raises(PersistenceError):
        JsonStateFile(positions_path).read()


def test_malformed_entries_are_skipped(positions_path):
    os.makedirs(os.path.dirname(positions_path))
    good = Position.open(TOKEN_A, 1.0, 50.0, 200.0, 0.1, entry_timestamp=1_700_000_000.0)
    with open(positions_path, "w") as f:
        json.dump({"positions": [good.to_dict(), {"entryPrice": 1.0}]}, f)

    loaded = PositionStore(positions_path).load()
    assert [p.token_address for p in loaded] == [TOKEN_A]


@pytest.mark.asyncio
async def test_failed_write_reports_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory")
    store = PositionStore(str(blocker / "positions.json"))

    assert await store.save([]) is False
    assert store.file.failed_writes == 1


@pytest.mark.asyncio
async def test_known_tokens_round_trip_and_reset(tmp_path):
    path = str(tmp_path / ".cache" / "pump_tokens.json")
    store = KnownTokenStore(path)

    assert await store.save({TOKEN_B, TOKEN_A}) is True
    with open(path) as f:
        assert json.load(f)["tokens"] == [TOKEN_A, TOKEN_B]
    assert KnownTokenStore(path).load() == {TOKEN_A, TOKEN_B}

    assert await store.reset() is True
    assert KnownTokenStore(path).load() == set()
