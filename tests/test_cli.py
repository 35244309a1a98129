from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.sent: List[Tuple[str, float]] = []
        self.history_calls: List[Tuple[str, Optional[int]]] = []
        self.latest_payload: Dict[str, Any] = {"timestamp": 1710072000000, "level": 2.5}
        self.history_payload: List[Dict[str, Any]] = [
            {"timestamp": 1710072000000, "level": 1.0},
            {"timestamp": 1710072060000, "level": 1.5},
        ]
        self.closed = False

    def send_reading(self, device_id: str, level: float) -> bool:
        self.sent.append((device_id, level))
        return True

    def get_latest(self, device_id: str) -> Dict[str, Any]:
        return self.latest_payload

    def get_history(self, device_id: str, days: Optional[int] = None) -> List[Dict[str, Any]]:
        self.history_calls.append((device_id, days))
        return self.history_payload

    def flush(self) -> Dict[str, Any]:
        return {"reading_count": 4, "device_count": 2, "bucket_count": 2, "attempts": 1, "dropped": 0, "skipped": False}

    def sweep(self) -> Dict[str, Any]:
        return {"cutoff_day": "2024-03-03", "deleted": 1, "failed": 0, "deleted_buckets": ["history/tank/2024-03-01"]}

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_ingest_sends_reading(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["ingest", "tank-1", "3.5"])

    assert result.exit_code == 0
    assert "Reading accepted for tank-1" in result.stdout
    assert stub.sent == [("tank-1", 3.5)]
    assert stub.closed is True


def test_latest_renders_reading(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["latest", "tank-1"])

    assert result.exit_code == 0
    assert "timestamp: 2024-03-10T12:00:00.000Z" in result.stdout
    assert "level: 2.5" in result.stdout


def test_latest_without_data(runner: CliRunner, stub: StubClient) -> None:
    stub.latest_payload = {}

    result = runner.invoke(app, ["latest", "tank-1"])

    assert result.exit_code == 0
    assert "No data recorded." in result.stdout


def test_history_passes_days_and_lists_points(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["history", "tank-1", "--days", "2"])

    assert result.exit_code == 0
    assert stub.history_calls == [("tank-1", 2)]
    assert "2 readings" in result.stdout


def test_flush_and_sweep_reports(runner: CliRunner, stub: StubClient) -> None:
    flushed = runner.invoke(app, ["flush"])
    swept = runner.invoke(app, ["sweep"])

    assert flushed.exit_code == 0
    assert "reading_count: 4" in flushed.stdout
    assert swept.exit_code == 0
    assert "history/tank/2024-03-01" in swept.stdout


def test_base_url_option_reaches_client(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["--base-url", "http://telemetry:9000/", "latest", "tank-1"])

    assert result.exit_code == 0
    assert stub.config.base_url == "http://telemetry:9000"


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://example.test/")
    monkeypatch.setenv("CLI_REQUEST_TIMEOUT", "2.5")

    config = load_config()

    assert config.base_url == "http://example.test"
    assert config.timeout == 2.5
