"""
Tests for the configuration models and environment overrides.
"""
import pytest
from pydantic import ValidationError

from sniper.models.config import (
    SOL_MINT, DiscoveryConfig, NetworkConfig, ProviderConfig, SniperConfig,
    ValidationConfig, load_config_from_env,
)


ENV_VARS = [
    "BOT_MODE", "LOG_LEVEL", "EXECUTION_CLIENT", "SOLANA_RPC_URL", "SOLANA_WS_URL",
    "WALLET_PUBLIC_KEY", "HELIUS_API_KEY", "PUMP_SNIPE_AMOUNT", "SLIPPAGE_BPS",
    "MAX_ACTIVE_POSITIONS", "STOP_LOSS_PERCENTAGE", "TAKE_PROFIT_PERCENTAGE",
    "POSITION_MONITOR_INTERVAL", "MAX_POSITION_AGE_HOURS", "MIN_LIQUIDITY_THRESHOLD",
    "MIN_TOKEN_AGE_HOURS", "MAX_TOKEN_AGE_HOURS", "SCAN_INTERVAL", "MAX_WAIT_FOR_LIQUIDITY",
    "BIRDEYE_API_KEY", "SOLSCAN_API_KEY",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    config = SniperConfig()

    assert config.is_paper_trading()
    assert config.trading.max_active_positions == 3
    assert config.risk_management.stop_loss_percentage == 50.0
    assert config.risk_management.take_profit_percentage == 200.0
    assert config.market_data.cache_ttl_seconds["quote"] == 15.0
    assert config.discovery.max_wait_for_liquidity_ms == 300000
    assert SOL_MINT in config.get_excluded_tokens()


def test_ws_url_derived_from_rpc():
    assert NetworkConfig(rpc_url="https://rpc.test/?k=1").get_ws_url() == "wss://rpc.test/?k=1"
    assert NetworkConfig(rpc_url="http://localhost:8899").get_ws_url() == "ws://localhost:8899"
    assert NetworkConfig(ws_url="wss://ws.test").get_ws_url() == "wss://ws.test"


def test_provider_url_is_validated():
    assert ProviderConfig(base_url="https://api.test/").base_url == "https://api.test"
    with pytest.raises(ValidationError):
        ProviderConfig(base_url="ftp://api.test")


def test_age_window_must_be_ordered():
    with pytest.raises(ValidationError):
        DiscoveryConfig(min_token_age_hours=10, max_token_age_hours=5)


def test_score_weights_must_sum_to_one():
    with pytest.raises(ValidationError):
        ValidationConfig(score_weights=[0.5, 0.5, 0.5, 0.0, 0.0])
    with pytest.raises(ValidationError):
        ValidationConfig(quick_score_weights=[1.0])


def test_blocklist_is_lowercased():
    assert ValidationConfig(blocklist=["Rug", ""]).blocklist == ["rug"]


def test_env_overrides(clean_env):
    clean_env.setenv("PUMP_SNIPE_AMOUNT", "0.25")
    clean_env.setenv("MAX_ACTIVE_POSITIONS", "5")
    clean_env.setenv("HELIUS_API_KEY", "secret")
    clean_env.setenv("BIRDEYE_API_KEY", "bird")

    overrides = load_config_from_env()

    assert overrides["trading"] == {"snipe_amount": 0.25, "max_active_positions": 5}
    assert overrides["network"]["rpc_url"] == "https://mainnet.helius-rpc.com/?api-key=secret"
    assert overrides["market_data"]["providers"]["birdeye"] == {"api_key": "bird"}
    assert overrides["market_data"]["providers"]["onchain"]["base_url"].startswith("https://mainnet.helius")


def test_empty_env_has_no_overrides(clean_env):
    assert load_config_from_env() == {}
