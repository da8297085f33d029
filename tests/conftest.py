import asyncio
from collections import defaultdict
from unittest.mock import AsyncMock, MagicMock

import pytest

from sniper.connectors.execution import ExecutionClient
from sniper.market_data.base_provider import BaseProvider
from sniper.models.asset import SwapQuote, TokenInfo
from sniper.models.config import SOL_MINT, ProviderConfig, SniperConfig


def mint(tag):
    """Base58-looking 44 char address built from a short tag"""
    return tag.ljust(44, "x")


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeProvider(BaseProvider):
    """Provider whose answers are scripted per data kind"""

    def __init__(self, name, responses=None, **config_overrides):
        self.name = name
        settings = {"base_url": f"https://{name}.test", "min_interval_seconds": 0}
        settings.update(config_overrides)
        super().__init__(ProviderConfig(**settings))
        # kind -> value, exception, or list consumed in order (last one repeats)
        self.responses = dict(responses or {})
        self.calls = defaultdict(int)
        self.gate = None

    async def _respond(self, kind):
        self.calls[kind] += 1
        if self.gate is not None:
            await self.gate.wait()
        result = self.responses.get(kind)
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch_price(self, address, max_age=None):
        return await self._respond("price")

    async def fetch_liquidity(self, address):
        return await self._respond("liquidity")

    async def fetch_volume(self, address):
        return await self._respond("volume")

    async def fetch_metrics(self, address):
        return await self._respond("metrics")

    async def fetch_token_info(self, address):
        return await self._respond("token_info")

    async def fetch_token_age(self, address):
        return await self._respond("age")

    async def fetch_holders(self, address):
        return await self._respond("holders")

    async def fetch_quote(self, input_mint, output_mint, amount):
        return await self._respond("quote")


class FakeExecutionClient(ExecutionClient):
    """In-memory wallet; every buy credits 1000 tokens"""

    def __init__(self, balance=1.0, token_balances=None):
        self.balance = balance
        self.token_balances = dict(token_balances or {})
        self.trades = []
        self.fail_buys = False
        self.fail_sells = False
        self.trade_delay = 0.0

    def get_public_key(self):
        return mint("FakeWa11et")

    async def get_balance(self):
        return self.balance

    async def get_token_balance(self, token_address):
        return self.token_balances.get(token_address, 0.0)

    async def get_all_wallet_tokens(self):
        return [{"asset": asset, "balance": amount} for asset, amount in self.token_balances.items()]

    async def execute_trade(self, from_asset, to_asset, amount, slippage_bps):
        if self.trade_delay:
            await asyncio.sleep(self.trade_delay)

        selling = from_asset != SOL_MINT
        if (selling and self.fail_sells) or (not selling and self.fail_buys):
            return None

        self.trades.append((from_asset, to_asset, amount))
        if selling:
            self.token_balances[from_asset] -= amount
        else:
            self.token_balances[to_asset] = self.token_balances.get(to_asset, 0.0) + 1000.0
        return f"tx-{len(self.trades)}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def execution():
    return FakeExecutionClient()


@pytest.fixture
def config(tmp_path):
    """Paper trading config writing its state under tmp_path"""
    return SniperConfig(
        bot={"shutdown_grace_seconds": 1.0},
        trading={"snipe_amount": 0.1, "max_active_positions": 3, "pre_trade_validation": False},
        risk_management={
            "stop_loss_percentage": 50.0,
            "take_profit_percentage": 200.0,
            "take_profit_sell_percentage": 80.0,
            "max_position_age_hours": 24.0,
            "monitor_interval_seconds": 3600.0,
            "error_retry_seconds": 3600.0,
        },
        discovery={"feeds": ["jupiter"], "scan_interval_seconds": 3600.0},
        connection={"enabled": False},
        persistence={
            "positions_file": str(tmp_path / "data" / "positions.json"),
            "known_tokens_file": str(tmp_path / ".cache" / "pump_tokens.json"),
        },
    )


@pytest.fixture
def aggregator():
    """Aggregator double answering with healthy market data"""
    agg = MagicMock()
    agg.get_price = AsyncMock(return_value=100.0)
    agg.get_liquidity = AsyncMock(return_value=50.0)
    agg.get_token_age = AsyncMock(return_value=0.0)
    agg.get_token_info = AsyncMock(
        side_effect=lambda address: TokenInfo(address=address, symbol="NEW", name="New Token")
    )
    agg.get_quote = AsyncMock(
        side_effect=lambda src, dst, amount: SwapQuote(src, dst, amount, 1000)
    )
    agg.close = AsyncMock()
    agg.get_stats.return_value = {}
    return agg
