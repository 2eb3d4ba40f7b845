"""Tests for the command line interface."""
from unittest.mock import patch

import pytest
from loguru import logger
from typer.testing import CliRunner

from meshprobe.__version__ import __version__
from meshprobe.cli.main import app, parse_http_target
from meshprobe.core.errors import MeasurementInterrupted, RateLimitError
from meshprobe.core.models import MeasurementCreateResponse, RequestOptions
from meshprobe.storage.measurement_log import MeasurementLog

runner = CliRunner()


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Keep config, logs and profile inside a temporary directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MESHPROBE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("MESHPROBE_API_MIN_INTERVAL", "0")
    monkeypatch.delenv("MESHPROBE_TOKEN", raising=False)
    yield tmp_path / "data"
    logger.remove()


@pytest.fixture
def api_client():
    with patch("meshprobe.cli.main.ProbeApiClient") as client_cls:
        yield client_cls.return_value


class TestBasicCommands:
    """Test commands that need no measurement."""

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"meshprobe {__version__}" in result.output

    def test_version_command(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_empty_history(self):
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "No measurements found." in result.output

    def test_auth_login_and_status(self, data_dir):
        result = runner.invoke(app, ["auth", "login", "--token", "secret"])
        assert result.exit_code == 0
        assert (data_dir / "profile.json").exists()

        result = runner.invoke(app, ["auth", "status"])
        assert "does not expire" in result.output

        runner.invoke(app, ["auth", "logout"])
        result = runner.invoke(app, ["auth", "status"])
        assert "Not signed in" in result.output


class TestFlagValidation:
    """Test invalid flag combinations."""

    def test_ipv4_and_ipv6(self, api_client):
        result = runner.invoke(app, ["ping", "example.com", "-4", "-6"])
        assert result.exit_code == 1
        api_client.create_measurement.assert_not_called()

    def test_invalid_header(self, api_client):
        result = runner.invoke(app, ["http", "example.com", "-H", "no-colon"])
        assert result.exit_code == 1
        api_client.create_measurement.assert_not_called()

    def test_ambiguous_locator(self, api_client):
        result = runner.invoke(app, ["--ci", "ping", "example.com", "--from", "Berlin,@1"])
        assert result.exit_code == 1
        api_client.create_measurement.assert_not_called()
        api_client.get_measurement.assert_not_called()

    def test_reference_without_history(self, api_client):
        result = runner.invoke(app, ["--ci", "ping", "example.com", "--from", "last"])
        assert result.exit_code == 1
        api_client.create_measurement.assert_not_called()


class TestMeasurementCommands:
    """Test running measurements against a mocked service."""

    def test_ping(self, api_client, measurement_factory, berlin, new_york, data_dir):
        api_client.create_measurement.return_value = MeasurementCreateResponse(id="nzGzfAGL7sZfUs3c", probes_count=2)
        api_client.get_measurement.return_value = measurement_factory(
            [berlin, new_york], outputs=["Ping Results 1", "Ping Results 2"]
        )

        result = runner.invoke(app, ["--ci", "ping", "example.com", "--from", "Europe", "--limit", "2", "--packets", "5"])

        assert result.exit_code == 0
        assert "> Berlin, DE, EU, Network 1 (AS123)" in result.output
        assert "Ping Results 2" in result.output

        spec = api_client.create_measurement.call_args[0][0]
        payload = spec.to_payload()
        assert payload["locations"] == [{"magic": "Europe"}]
        assert payload["limit"] == 2
        assert payload["measurementOptions"] == {"packets": 5}
        assert payload["inProgressUpdates"] is False

        entries = MeasurementLog(data_dir / "measurements.csv").read_entries()
        assert entries[0]["measurement_id"] == "nzGzfAGL7sZfUs3c"
        assert entries[0]["locations"] == "Europe"

    def test_http_url_target(self, api_client, measurement_factory, berlin):
        api_client.create_measurement.return_value = MeasurementCreateResponse(id="nzGzfAGL7sZfUs3c", probes_count=1)
        api_client.get_measurement.return_value = measurement_factory([berlin])

        result = runner.invoke(
            app, ["--ci", "http", "https://example.com:8443/status?x=1", "-H", "X-Test: yes", "--full"]
        )

        assert result.exit_code == 0
        payload = api_client.create_measurement.call_args[0][0].to_payload()
        assert payload["target"] == "example.com"
        assert payload["measurementOptions"]["protocol"] == "HTTPS"
        assert payload["measurementOptions"]["port"] == 8443
        request = payload["measurementOptions"]["request"]
        assert request["method"] == "GET"
        assert request["path"] == "/status"
        assert request["query"] == "x=1"
        assert request["headers"] == {"X-Test": "yes"}

    def test_rate_limit_hint_after_poll_failures(self, api_client):
        api_client.create_measurement.return_value = MeasurementCreateResponse(id="nzGzfAGL7sZfUs3c", probes_count=1)
        api_client.get_measurement.side_effect = RateLimitError("Too many requests", remaining=0, reset=60)

        result = runner.invoke(app, ["--ci", "ping", "example.com"])

        assert result.exit_code == 1
        assert "0 measurements remaining, limit resets in 60s" in result.output
        assert api_client.get_measurement.call_count == 3

    def test_rate_limit_hint_on_submission(self, api_client):
        api_client.create_measurement.side_effect = RateLimitError("Too many requests", credits_remaining=0)

        result = runner.invoke(app, ["--ci", "ping", "example.com"])

        assert result.exit_code == 1
        assert "0 credits remaining" in result.output

    def test_interrupted_exit_code(self, api_client):
        with patch("meshprobe.cli.main.SessionOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run.side_effect = MeasurementInterrupted("interrupted")
            result = runner.invoke(app, ["--ci", "ping", "example.com"])

        assert result.exit_code == 130
        assert "Measurement interrupted" in result.output


class TestParseHttpTarget:
    """Test parse_http_target."""

    def test_plain_host(self):
        options = RequestOptions()
        assert parse_http_target("example.com", options) == ("example.com", options, None, None)

    def test_url(self):
        host, request, protocol, port = parse_http_target("http://example.com/a/b?q=1", RequestOptions())
        assert host == "example.com"
        assert request.path == "/a/b"
        assert request.query == "q=1"
        assert protocol == "HTTP"
        assert port is None

    def test_explicit_options_win(self):
        _, request, _, _ = parse_http_target("https://example.com/a", RequestOptions(path="/b"))
        assert request.path == "/b"
