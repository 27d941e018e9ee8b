from __future__ import annotations

import pytest
from typer.testing import CliRunner

from touchbase import config
from touchbase.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TOUCHBASE_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("TOUCHBASE_USER", "cli-user")
    monkeypatch.delenv("TOUCHBASE_CONTACTS_FILE", raising=False)
    monkeypatch.delenv("TOUCHBASE_LEAD_MINUTES", raising=False)


def test_remind_all_clear():
    result = runner.invoke(app, ["remind"])
    assert result.exit_code == 0
    assert "All clear" in result.output


def test_log_note_creates_relationship():
    result = runner.invoke(app, ["log", "Alex", "Loves bouldering"])
    assert result.exit_code == 0, result.output
    assert "Logged note for Alex" in result.output

    result = runner.invoke(app, ["people"])
    assert result.exit_code == 0
    assert "Alex" in result.output
    assert "today" in result.output


def test_log_rejects_invalid_activity():
    result = runner.invoke(app, ["log", "Sam", "--type", "reminder", "--when", "2000-01-01T00:00:00Z"])
    assert result.exit_code == 1
    assert "Reminder date must be in the future" in result.output


def test_missing_user_exits(monkeypatch):
    monkeypatch.delenv("TOUCHBASE_USER")
    result = runner.invoke(app, ["people"])
    assert result.exit_code == 1
    assert "No user given" in result.output


def test_lead_minutes_config(monkeypatch):
    assert config.lead_minutes() == (60, 30, 15)
    monkeypatch.setenv("TOUCHBASE_LEAD_MINUTES", "120, 10")
    assert config.lead_minutes() == (120, 10)
    monkeypatch.setenv("TOUCHBASE_LEAD_MINUTES", "soon")
    with pytest.raises(ValueError):
        config.lead_minutes()
    monkeypatch.setenv("TOUCHBASE_LEAD_MINUTES", "-5")
    with pytest.raises(ValueError):
        config.lead_minutes()
