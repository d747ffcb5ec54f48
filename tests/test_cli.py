"""Tests for the ore-admin CLI.

Only commands that need no database are exercised here; ``seed`` and
``reset`` are covered through ``ore.services.seed``.
"""
from __future__ import annotations

from typer.testing import CliRunner

from ore.auth.tokens import validate_access_code
from ore.cli import app
from ore.config import settings

runner = CliRunner()


class TestCreateToken:
    def test_prints_valid_token(self):
        result = runner.invoke(app, ["create-token", "user-42", "--hours", "2"])
        assert result.exit_code == 0, result.output
        claims = validate_access_code(result.output.strip())
        assert claims["sub"] == "user-42"
        assert claims["exp"] - claims["iat"] == 7200

    def test_missing_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "access_token_secret", None)
        result = runner.invoke(app, ["create-token", "user-42"])
        assert result.exit_code == 1
        assert "not configured" in result.output


class TestReset:
    def test_declining_confirmation_aborts(self):
        result = runner.invoke(app, ["reset"], input="n\n")
        assert result.exit_code == 1
        assert "Aborted" in result.output


def test_no_args_shows_help():
    result = runner.invoke(app, [])
    assert "create-token" in result.output
