"""dogenode-payout command line, against a temporary SQLite ledger."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from dogenode_payout.cli import cli

from tests.factories import DOGE_ADDR, DOGE_ADDR_2


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setenv("DOGENODE_PAYOUT_DB_PATH", str(tmp_path / "ledger.db"))
    for name in ("NODE_RPC_PASSWORD", "EXPLORER_API_KEY", "WRAPPED_API_KEY", "LOG_LEVEL"):
        monkeypatch.delenv(f"DOGENODE_PAYOUT_{name}", raising=False)
    return CliRunner()


def _field(output: str, label: str) -> str:
    """Value of a ``Label:   value`` line."""
    for line in output.splitlines():
        if line.startswith(f"{label}:"):
            return line.split(":", 1)[1].strip()
    raise AssertionError(f"{label!r} not in output:\n{output}")


def test_earn_then_balance(runner):
    result = runner.invoke(cli, ["earn", DOGE_ADDR, "100"])
    assert result.exit_code == 0, result.output
    assert "Available: 100.00000000 DOGE" in result.output

    result = runner.invoke(cli, ["balance", DOGE_ADDR])
    assert result.exit_code == 0
    assert "100.00000000" in result.output
    assert _field(result.output, "Pending") == "0.00000000 DOGE"


def test_earn_invalid_address(runner):
    result = runner.invoke(cli, ["earn", "not-doge", "5"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_earn_invalid_amount(runner):
    result = runner.invoke(cli, ["earn", DOGE_ADDR, "1000000"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_withdraw_without_backends_fails(runner):
    runner.invoke(cli, ["earn", DOGE_ADDR, "100"])
    result = runner.invoke(cli, ["withdraw", DOGE_ADDR, DOGE_ADDR_2, "50"])
    assert result.exit_code == 1
    assert "Error:" in result.output

    # Nothing was reserved
    result = runner.invoke(cli, ["balance", DOGE_ADDR])
    assert _field(result.output, "Available") == "100.00000000 DOGE"


def test_withdraw_rejects_unknown_method(runner):
    result = runner.invoke(cli, ["withdraw", DOGE_ADDR, DOGE_ADDR_2, "50", "--method", "pigeon"])
    assert result.exit_code == 2


def test_tx_unknown_id(runner):
    result = runner.invoke(cli, ["tx", "wd_0_00000000"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_history_and_activity(runner):
    runner.invoke(cli, ["earn", DOGE_ADDR, "1.5"])
    runner.invoke(cli, ["earn", DOGE_ADDR, "2.5"])

    result = runner.invoke(cli, ["history", DOGE_ADDR, "--limit", "1"])
    assert result.exit_code == 0
    assert "2.50000000" in result.output
    assert "1 of 2" in result.output

    result = runner.invoke(cli, ["activity"])
    assert result.exit_code == 0
    assert result.output.count("earning_credited") == 2


def test_history_empty(runner):
    result = runner.invoke(cli, ["history", DOGE_ADDR_2])
    assert result.exit_code == 0
    assert "No transactions." in result.output


def test_stats(runner):
    runner.invoke(cli, ["earn", DOGE_ADDR, "10"])
    runner.invoke(cli, ["earn", DOGE_ADDR_2, "5"])
    result = runner.invoke(cli, ["stats"])
    assert result.exit_code == 0
    assert _field(result.output, "Accounts") == "2"
    assert _field(result.output, "Completed volume") == "15.00000000 DOGE"


def test_status_hides_secrets(runner, monkeypatch):
    monkeypatch.setenv("DOGENODE_PAYOUT_NODE_RPC_PASSWORD", "hunter2")
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "***configured***" in result.output
    assert "hunter2" not in result.output


def test_backends_none_enabled(runner):
    result = runner.invoke(cli, ["backends"])
    assert result.exit_code == 0
    assert "No settlement backend enabled." in result.output


def test_run_requires_a_backend(runner):
    result = runner.invoke(cli, ["run"])
    assert result.exit_code == 1
    assert "No settlement backend enabled" in result.output


def test_bad_config_file(runner, tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[withdrawal]\nmin_amount = 10\nmax_amount = 1\n")
    result = runner.invoke(cli, ["-c", str(path), "status"])
    assert result.exit_code == 1
    assert "Error:" in result.output
