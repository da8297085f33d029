"""
Tests for the engine wiring: startup checks, new-token flow and lifecycle.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from sniper.bot.sniper_engine import EngineState, SniperEngine
from sniper.core.event_bus import EventType
from sniper.core.persistence import PositionStore
from sniper.models.config import ConfigurationError
from sniper.models.position import Position


TOKEN_A = "TokenAxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"
TOKEN_B = "TokenBxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"


@pytest.fixture
def engine_aggregator(aggregator):
    jupiter = MagicMock()
    jupiter.fetch_token_list = AsyncMock(return_value=[])
    aggregator.providers = {"jupiter": jupiter, "onchain": MagicMock()}
    return aggregator


@pytest.fixture
def engine(config, engine_aggregator, execution):
    return SniperEngine(config, aggregator=engine_aggregator, execution=execution)


@pytest.mark.asyncio
async def test_live_mode_requires_wallet(config, engine_aggregator):
    config.bot.mode = "live"
    engine = SniperEngine(config, aggregator=engine_aggregator)

    with pytest.raises(ConfigurationError):
        await engine.initialize()
    assert engine.state == EngineState.ERROR


@pytest.mark.asyncio
async def test_missing_rpc_endpoint_is_fatal(config, engine_aggregator):
    config.network.rpc_url = ""
    with pytest.raises(ConfigurationError):
        await SniperEngine(config, aggregator=engine_aggregator).initialize()


@pytest.mark.asyncio
async def test_initialize_wires_components(engine):
    assert await engine.initialize() is True

    assert engine.position_manager is not None
    assert engine.scanner is not None
    assert [f.name for f in engine.scanner.feeds] == ["jupiter"]
    # Disabled in the test configuration
    assert engine.supervisor is None


@pytest.mark.asyncio
async def test_new_token_goes_through_liquidity_then_entry(engine):
    await engine.initialize()
    engine.state = EngineState.RUNNING
    engine.scanner.wait_for_liquidity = AsyncMock(return_value=True)
    engine.position_manager.snipe_token = AsyncMock(return_value=True)

    await engine._on_new_asset(TOKEN_A)
    await engine._on_new_asset(TOKEN_A)

    engine.scanner.wait_for_liquidity.assert_awaited_once_with(TOKEN_A)
    engine.position_manager.snipe_token.assert_awaited_once_with(TOKEN_A, symbol="NEW")
    assert engine.snipes_succeeded == 1


@pytest.mark.asyncio
async def test_no_liquidity_means_no_entry(engine):
    await engine.initialize()
    engine.state = EngineState.RUNNING
    engine.scanner.wait_for_liquidity = AsyncMock(return_value=False)
    engine.position_manager.snipe_token = AsyncMock(return_value=True)

    await engine._on_new_asset(TOKEN_A)

    engine.position_manager.snipe_token.assert_not_awaited()
    assert TOKEN_A in engine.attempted_tokens


@pytest.mark.asyncio
async def test_full_capacity_skips_token(engine):
    await engine.initialize()
    engine.state = EngineState.RUNNING
    engine.scanner.wait_for_liquidity = AsyncMock(return_value=True)
    manager = engine.position_manager
    for i in range(manager.max_positions):
        address = f"Held{i + 1}".ljust(43, "x")
        manager.positions[address] = Position.open(address, 1.0, 50.0, 200.0, 0.1)

    await engine._on_new_asset(TOKEN_B)

    engine.scanner.wait_for_liquidity.assert_not_awaited()
    # Not marked as attempted, a later slot can still take it
    assert TOKEN_B not in engine.attempted_tokens


@pytest.mark.asyncio
async def test_tokens_ignored_when_not_running(engine):
    await engine.initialize()
    engine.scanner.wait_for_liquidity = AsyncMock(return_value=True)

    await engine._on_new_asset(TOKEN_A)
    engine.scanner.wait_for_liquidity.assert_not_awaited()


@pytest.mark.asyncio
async def test_status_flags_low_balance(engine, execution):
    execution.balance = 0.05
    await engine.initialize()

    status = await engine.get_status()
    assert status["wallet"]["balance"] == 0.05
    assert status["wallet"]["low_balance"] is True
    assert status["engine"]["mode"] == "paper_trading"
    assert status["positions"]["max_positions"] == 3


@pytest.mark.asyncio
async def test_connection_errors_are_published(engine):
    await engine.initialize()
    await engine._on_connection_error(ConnectionError("closed"))

    assert engine.connection_errors == 1
    event = engine.event_bus._event_queue.get_nowait()
    assert event.type == EventType.CONNECTION_LOST.value


@pytest.mark.asyncio
async def test_start_and_stop(engine, engine_aggregator, execution, config):
    execution.token_balances = {TOKEN_A: 10.0}

    assert await engine.start() is True
    assert engine.state == EngineState.RUNNING
    assert engine.scanner.is_scanning
    # Wallet holding reconciled into a recovered position
    assert engine.position_manager.positions[TOKEN_A].recovered is True

    await engine.stop(grace_seconds=1.0)

    assert engine.state == EngineState.STOPPED
    assert engine.scanner.is_scanning is False
    engine_aggregator.close.assert_awaited_once()
    assert engine.position_manager.store.load()[0].monitoring is True


@pytest.mark.asyncio
async def test_supervisor_created_with_wallet(config, engine_aggregator, execution):
    config.connection.enabled = True
    config.network.wallet_public_key = "Wa11etxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"
    engine = SniperEngine(config, aggregator=engine_aggregator, execution=execution)

    assert await engine.initialize() is True
    assert engine.supervisor is not None
    assert engine.supervisor.ws_url == "wss://api.mainnet-beta.solana.com"


@pytest.mark.asyncio
async def test_status_only_lifecycle_keeps_persisted_positions(engine, config):
    store = PositionStore(config.persistence.positions_file)
    assert await store.save([Position.open(TOKEN_A, 1.0, 50.0, 200.0, 0.1)])

    await engine.initialize()
    await engine.get_status()
    await engine.stop(grace_seconds=0)

    assert [p.token_address for p in store.load()] == [TOKEN_A]
