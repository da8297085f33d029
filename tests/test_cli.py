"""
Tests for the command-line interface.
"""
import asyncio
import json

import pytest
import yaml
from click.testing import CliRunner

from cli import cli
from sniper.core.persistence import KnownTokenStore, PositionStore
from sniper.models.position import ExitReason, Position


TOKEN_A = "TokenAxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"
TOKEN_B = "TokenBxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def config_file(workdir):
    path = workdir / "config.yaml"
    path.write_text(yaml.safe_dump({
        "persistence": {
            "positions_file": str(workdir / "data" / "positions.json"),
            "known_tokens_file": str(workdir / "cache" / "tokens.json"),
        },
    }))
    return path


def test_init_creates_sample(runner, workdir):
    result = runner.invoke(cli, ["init", "-o", "sample.yaml"])

    assert result.exit_code == 0
    assert (workdir / "sample.yaml").exists()
    assert "Next steps" in result.output


def test_validate_missing_file(runner, workdir):
    result = runner.invoke(cli, ["validate", "-c", "missing.yaml"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_validate_good_and_bad_files(runner, workdir, config_file):
    result = runner.invoke(cli, ["validate", "-c", str(config_file)])
    assert result.exit_code == 0
    assert "valid" in result.output

    bad = workdir / "bad.yaml"
    bad.write_text(yaml.safe_dump({"risk_management": {"stop_loss_percentage": 150}}))
    result = runner.invoke(cli, ["validate", "-c", str(bad)])
    assert result.exit_code == 1
    assert "risk_management.stop_loss_percentage" in result.output


def test_invalid_config_aborts_commands(runner, workdir):
    bad = workdir / "bad.yaml"
    bad.write_text(yaml.safe_dump({"trading": {"max_active_positions": 0}}))

    result = runner.invoke(cli, ["-c", str(bad), "positions"])
    assert result.exit_code == 1


def test_positions_lists_active_only_by_default(runner, config_file, workdir):
    store = PositionStore(str(workdir / "data" / "positions.json"))
    active = Position.open(TOKEN_A, 1.0, 50.0, 200.0, 0.1, symbol="ALPHA")
    closed = Position.open(TOKEN_B, 1.0, 50.0, 200.0, 0.1, symbol="BETA")
    closed.close(ExitReason.STOP_LOSS)
    assert asyncio.run(store.save([active, closed]))

    result = runner.invoke(cli, ["-c", str(config_file), "positions"])
    assert result.exit_code == 0
    assert "Active positions: 1/3" in result.output
    assert "ALPHA" in result.output
    assert "BETA" not in result.output

    result = runner.invoke(cli, ["-c", str(config_file), "positions", "--all"])
    assert "BETA" in result.output


def test_positions_without_file(runner, config_file):
    result = runner.invoke(cli, ["-c", str(config_file), "positions"])

    assert result.exit_code == 0
    assert "Active positions: 0/3" in result.output
    assert "No positions" in result.output


def test_known_tokens_reset(runner, config_file, workdir):
    path = workdir / "cache" / "tokens.json"
    assert asyncio.run(KnownTokenStore(str(path)).save([TOKEN_A, TOKEN_B]))

    result = runner.invoke(cli, ["-c", str(config_file), "known-tokens"])
    assert "2 known tokens" in result.output

    result = runner.invoke(cli, ["-c", str(config_file), "known-tokens", "--reset"], input="n\n")
    assert "Aborted" in result.output
    assert KnownTokenStore(str(path)).load() == {TOKEN_A, TOKEN_B}

    result = runner.invoke(cli, ["-c", str(config_file), "known-tokens", "--reset", "--yes"])
    assert result.exit_code == 0
    assert KnownTokenStore(str(path)).load() == set()
    assert json.loads(path.read_text())["tokens"] == []


def test_status_in_paper_mode(runner, config_file):
    result = runner.invoke(cli, ["-c", str(config_file), "status"])

    assert result.exit_code == 0
    assert "paper_trading" in result.output
    assert "0/3 active" in result.output


def test_status_leaves_positions_file_intact(runner, config_file, workdir):
    store = PositionStore(str(workdir / "data" / "positions.json"))
    assert asyncio.run(store.save([Position.open(TOKEN_A, 1.0, 50.0, 200.0, 0.1, symbol="ALPHA")]))

    result = runner.invoke(cli, ["-c", str(config_file), "status"])

    assert result.exit_code == 0
    assert "1/3 active" in result.output
    assert [p.symbol for p in store.load()] == ["ALPHA"]
