"""
Tests for configuration loading, validation and sample generation.
"""
import pytest
import yaml

from sniper.config.settings import (
    check_startup_requirements, create_sample_config, find_config_file, load_config,
    merge_configs, save_config, validate_config,
)
from sniper.models.config import ConfigurationError, SniperConfig


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_yaml_values_override_defaults(workdir):
    path = write_yaml(workdir / "custom.yaml", {
        "trading": {"snipe_amount": 0.5},
        "risk_management": {"stop_loss_percentage": 30},
    })

    config = load_config(path, use_env=False)

    assert config.trading.snipe_amount == 0.5
    assert config.risk_management.stop_loss_percentage == 30
    # Untouched sections keep their defaults
    assert config.trading.max_active_positions == 3
    assert config.risk_management.take_profit_percentage == 200.0


def test_default_location_is_found(workdir):
    write_yaml(workdir / "config.yaml", {"trading": {"max_active_positions": 7}})
    assert find_config_file() == "config.yaml"
    assert load_config(use_env=False).trading.max_active_positions == 7


def test_no_file_uses_defaults(workdir):
    assert load_config(use_env=False).model_dump(mode="json") == SniperConfig().model_dump(mode="json")


def test_missing_explicit_file_is_an_error(workdir):
    with pytest.raises(ConfigurationError):
        load_config("nope.yaml", use_env=False)


def test_invalid_values_are_configuration_errors(workdir):
    path = write_yaml(workdir / "bad.yaml", {"risk_management": {"stop_loss_percentage": 150}})
    with pytest.raises(ConfigurationError):
        load_config(path, use_env=False)


def test_non_mapping_file_is_rejected(workdir):
    path = workdir / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError):
        load_config(str(path), use_env=False)


def test_environment_overrides_file(workdir, monkeypatch):
    path = write_yaml(workdir / "config.yaml", {"trading": {"snipe_amount": 0.5}})
    monkeypatch.setenv("PUMP_SNIPE_AMOUNT", "0.05")
    monkeypatch.setenv("SOLANA_RPC_URL", "https://rpc.test")

    config = load_config(path)

    assert config.trading.snipe_amount == 0.05
    assert config.network.rpc_url == "https://rpc.test"
    assert config.market_data.providers.onchain.base_url == "https://rpc.test"


def test_merge_is_deep():
    merged = merge_configs({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"c": 4}})
    assert merged == {"a": {"b": 1, "c": 4}, "d": 3}


def test_sample_config_round_trip(workdir):
    filename = create_sample_config("config.sample.yaml")

    with open(filename) as f:
        content = f.read()
    assert content.startswith("# Pump Sniper Configuration")
    assert "excluded_tokens" not in content

    assert validate_config(filename) == (True, [])
    assert load_config(filename, use_env=False).discovery.excluded_tokens == SniperConfig().discovery.excluded_tokens


def test_save_config(workdir):
    config = SniperConfig(trading={"snipe_amount": 0.3})
    save_config(config, "out/config.yaml")
    assert load_config("out/config.yaml", use_env=False).trading.snipe_amount == 0.3


def test_validate_reports_field_errors():
    is_valid, errors = validate_config({"trading": {"slippage_bps": 0}})
    assert is_valid is False
    assert errors[0].startswith("trading.slippage_bps")


def test_validate_reports_live_mode_requirements():
    is_valid, errors = validate_config({"bot": {"mode": "live"}})
    assert is_valid is False
    assert "wallet_public_key" in errors[0]


def test_validate_reports_unknown_data_kinds():
    is_valid, errors = validate_config({"market_data": {"provider_order": {"candles": ["jupiter"]}}})
    assert is_valid is False
    assert errors == ["market_data.provider_order: unknown data kind 'candles'"]


def test_validate_missing_file():
    is_valid, errors = validate_config("does/not/exist.yaml")
    assert is_valid is False
    assert "Cannot read config file" in errors[0]


def test_startup_requirements():
    check_startup_requirements(SniperConfig())

    with pytest.raises(ConfigurationError):
        check_startup_requirements(SniperConfig(network={"rpc_url": ""}))

    live = SniperConfig(bot={"mode": "live"}, network={"wallet_public_key": "Wa11et"})
    with pytest.raises(ConfigurationError, match="execution_client"):
        check_startup_requirements(live)

    live.bot.execution_client = "my_exec:Client"
    check_startup_requirements(live)
