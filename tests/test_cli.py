from __future__ import annotations

import pytest
from typer.testing import CliRunner

import tuicord.cli.main as cli_main
from tuicord.cli.main import app
from tuicord.errors import ProviderConnectionError

runner = CliRunner()


@pytest.fixture
def launched(monkeypatch) -> list[tuple]:
    calls: list[tuple] = []

    async def _fake_run(config, flavor) -> None:
        calls.append((config, flavor))

    monkeypatch.setattr(cli_main, "_run", _fake_run)
    return calls


def test_no_subcommand_prints_banner() -> None:
    result = runner.invoke(app, [])

    assert result.exit_code == 0
    assert "The end of brainrot and doomscrolling is here." in result.output


@pytest.mark.parametrize("flag", ["--help", "-h"])
def test_help_flags(flag: str) -> None:
    result = runner.invoke(app, [flag])

    assert result.exit_code == 0
    for name in ("chat", "dm", "server"):
        assert name in result.output


def test_unknown_subcommand_fails() -> None:
    result = runner.invoke(app, ["bogus"])
    assert result.exit_code != 0


def test_missing_token_exits_before_connecting(launched) -> None:
    result = runner.invoke(app, ["dm"])

    assert result.exit_code == 1
    assert "No Discord token configured" in result.output
    assert launched == []


def test_subcommand_runs_with_overrides(monkeypatch, launched) -> None:
    monkeypatch.setenv("TUICORD_TOKEN", "secret")

    result = runner.invoke(app, ["server", "--history-limit", "10", "--log-level", "error"])

    assert result.exit_code == 0
    ((config, flavor),) = launched
    assert flavor == "server"
    assert config.history_limit == 10
    assert config.log_level == "ERROR"


def test_history_limit_is_validated(monkeypatch, launched) -> None:
    monkeypatch.setenv("TUICORD_TOKEN", "secret")

    result = runner.invoke(app, ["chat", "--history-limit", "0"])

    assert result.exit_code != 0
    assert launched == []


def test_connection_failure_exits_1(monkeypatch) -> None:
    monkeypatch.setenv("TUICORD_TOKEN", "bad")

    async def _failing_run(config, flavor) -> None:
        raise ProviderConnectionError("Login failed: 401 Unauthorized")

    monkeypatch.setattr(cli_main, "_run", _failing_run)

    result = runner.invoke(app, ["chat"])

    assert result.exit_code == 1
    assert "Cannot connect to Discord" in result.output
