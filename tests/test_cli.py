"""Tests for the `echohook` CLI."""

from __future__ import annotations

import subprocess
import sys

import pytest


@pytest.fixture()
def tmp_cwd(tmp_path, monkeypatch):
    """Run test in a clean temporary directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _run_cli(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "echohook.cli.main", *args],
        capture_output=True,
        text=True,
    )


def test_no_command_prints_help(tmp_cwd):
    result = _run_cli()
    assert result.returncode == 1
    assert "usage: echohook" in result.stdout


def test_config_validate_defaults(tmp_cwd):
    result = _run_cli("config", "validate")
    assert result.returncode == 0
    assert "Config is valid." in result.stdout
    assert "1, 2, 4, 8, 16, 30, 30, 30, 30, 30" in result.stdout


def test_config_validate_discovers_file(tmp_cwd):
    (tmp_cwd / "echohook.yaml").write_text("origin:\n  api_url: http://origin.test\n")
    result = _run_cli("config", "validate")
    assert result.returncode == 0
    assert "http://origin.test" in result.stdout


def test_config_validate_reports_errors(tmp_cwd):
    (tmp_cwd / "echohook.yaml").write_text("history:\n  limit: 0\nrelay:\n  port: 70000\n")
    result = _run_cli("config", "validate")
    assert result.returncode == 1
    assert "history.limit" in result.stdout
    assert "relay.port" in result.stdout


def test_missing_config_file(tmp_cwd):
    result = _run_cli("-c", "nope.yaml", "config", "validate")
    assert result.returncode == 1
    assert "Error loading config" in result.stderr


def test_history_without_origin(tmp_cwd, monkeypatch):
    for name in ("NEXT_PUBLIC_API_URL", "API_URL", "BACKEND_URL"):
        monkeypatch.delenv(name, raising=False)
    result = _run_cli("history", "sess-1")
    assert result.returncode == 1
    assert "Backend API URL not configured" in result.stderr


def test_watch_empty_session_id(tmp_cwd):
    result = _run_cli("--origin", "http://127.0.0.1:9", "watch", "")
    assert result.returncode == 2
    assert "session id must not be empty" in result.stderr


def test_malformed_yaml_config(tmp_cwd):
    (tmp_cwd / "echohook.yaml").write_text("origin: [bad\n")
    result = _run_cli("config", "validate")
    assert result.returncode == 1
    assert "Error loading config" in result.stderr
    assert "Traceback" not in result.stderr


def test_non_mapping_config_section(tmp_cwd):
    (tmp_cwd / "echohook.yaml").write_text("origin: x\n")
    result = _run_cli("config", "validate")
    assert result.returncode == 1
    assert "Error loading config" in result.stderr
    assert "origin" in result.stderr
    assert "Traceback" not in result.stderr


def test_test_without_origin(tmp_cwd, monkeypatch):
    for name in ("NEXT_PUBLIC_API_URL", "API_URL", "BACKEND_URL"):
        monkeypatch.delenv(name, raising=False)
    result = _run_cli("test", "sess-1")
    assert result.returncode == 1
    assert "Backend API URL not configured" in result.stderr


def test_history_filter_flag_accepted(tmp_cwd):
    result = _run_cli("history", "--help")
    assert result.returncode == 0
    assert "--filter" in result.stdout
