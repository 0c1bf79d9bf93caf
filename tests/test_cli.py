"""CLI tests using typer.testing.CliRunner (in-process).

``serve`` is only exercised on its failure paths; the running proxy is
covered by test_proxy_http.py.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from mcprelay import __version__
from mcprelay.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "RENDER_API_KEY",
        "MCP_PATH_SECRET",
        "UPSTREAM_MCP_URL",
        "UPSTREAM_TIMEOUT_MS",
        "HOST",
        "PORT",
        "RENDER_API_URL",
        "MAX_BODY_BYTES",
        "MCPRELAY_LOG",
    ):
        monkeypatch.delenv(name, raising=False)


class TestVersion:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestTools:
    def test_lists_catalog(self) -> None:
        result = runner.invoke(app, ["tools"])
        assert result.exit_code == 0
        assert "list-services" in result.output
        assert "trigger-deploy" in result.output


class TestServeConfigErrors:
    def test_bad_env_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("UPSTREAM_TIMEOUT_MS", "soon")
        result = runner.invoke(app, ["serve"])
        assert result.exit_code == 1
        assert "UPSTREAM_TIMEOUT_MS" in result.output

    def test_missing_config_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["serve", "--config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_bad_port_option(self) -> None:
        result = runner.invoke(app, ["serve", "--port", "0"])
        assert result.exit_code == 1
        assert "port" in result.output


class TestStats:
    def test_summarises_log(self, tmp_path: Path) -> None:
        log_path = tmp_path / "requests.jsonl"
        log_path.write_text(
            json.dumps({
                "timestamp": "2026-03-02T09:00:01+00:00",
                "event": "http_request",
                "method": "POST",
                "path": "/mcp/***",
                "status": 200,
                "mode": "streaming",
                "bytes": 2048,
                "chunks": 4,
            })
            + "\n"
        )
        result = runner.invoke(app, ["stats", str(log_path)])
        assert result.exit_code == 0
        assert "Request Summary" in result.output
        assert "streaming" in result.output

    def test_missing_log(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["stats", str(tmp_path / "none.jsonl")])
        assert result.exit_code == 1
        assert "Request log not found" in result.output
