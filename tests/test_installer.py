"""Tests for the probe installer (with mocked subprocess)."""
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from loguru import logger
from typer.testing import CliRunner

from meshprobe.cli.main import app
from meshprobe.core.installer import CONTAINER_NAME, PROBE_IMAGE, CommandResult, ProbeInstaller

runner = CliRunner()


def _completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def which():
    with patch("meshprobe.core.installer.shutil.which", return_value="/usr/bin/docker") as m_which:
        yield m_which


@pytest.fixture
def run():
    with patch("meshprobe.core.installer.subprocess.run") as m_run:
        yield m_run


def test_run_command_success(run):
    """run_command returns a successful CommandResult when docker returns 0."""
    run.return_value = _completed(stdout="Server Version: 24.0.7")
    result = ProbeInstaller().run_command(["docker", "info"])
    assert isinstance(result, CommandResult)
    assert result.success is True
    assert result.command == "docker info"
    run.assert_called_once_with(["docker", "info"], capture_output=True, text=True, timeout=30)


def test_run_command_timeout(run):
    run.side_effect = subprocess.TimeoutExpired(cmd="docker info", timeout=30)
    result = ProbeInstaller().run_command(["docker", "info"])
    assert result.success is False
    assert "timed out" in result.stderr


def test_docker_missing(which, run):
    which.return_value = None
    assert ProbeInstaller().docker_available() is False
    run.assert_not_called()


def test_docker_daemon_not_running(which, run):
    run.return_value = _completed(returncode=1, stderr="Cannot connect to the Docker daemon")
    assert ProbeInstaller().docker_available() is False


def test_is_installed(run):
    run.return_value = _completed(stdout=f"{CONTAINER_NAME}\n")
    assert ProbeInstaller().is_installed() is True


def test_install_command(run):
    run.return_value = _completed(stdout="4f2a9c1e0b7d\n")
    result = ProbeInstaller().install()
    assert result.success is True
    command = run.call_args[0][0]
    assert command[:3] == ["docker", "run", "-d"]
    assert "--restart=always" in command
    assert command[command.index("--name") + 1] == CONTAINER_NAME
    assert command[-1] == PROBE_IMAGE


class TestInstallProbeCommand:
    """Test the install-probe command."""

    @pytest.fixture(autouse=True)
    def data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MESHPROBE_DATA_DIR", str(tmp_path / "data"))
        yield
        logger.remove()

    def test_without_docker(self, which, run):
        which.return_value = None
        result = runner.invoke(app, ["install-probe", "--yes"])
        assert result.exit_code == 1
        assert "Docker is not installed" in result.output

    def test_installs_after_confirmation(self, which, run):
        run.side_effect = [_completed(), _completed(stdout=""), _completed(stdout="4f2a9c1e0b7d8a\n")]
        with patch("meshprobe.cli.main.questionary.confirm") as confirm:
            confirm.return_value.ask.return_value = True
            result = runner.invoke(app, ["install-probe"])

        assert result.exit_code == 0
        assert "Probe started" in result.output
        assert run.call_args_list[2][0][0][:2] == ["docker", "run"]

    def test_declined(self, which, run):
        run.side_effect = [_completed(), _completed(stdout="")]
        with patch("meshprobe.cli.main.questionary.confirm") as confirm:
            confirm.return_value.ask.return_value = False
            result = runner.invoke(app, ["install-probe"])

        assert result.exit_code == 1
        assert run.call_count == 2

    def test_already_installed(self, which, run):
        run.side_effect = [_completed(), _completed(stdout=f"{CONTAINER_NAME}\n")]
        result = runner.invoke(app, ["install-probe", "--yes"])
        assert result.exit_code == 0
        assert "already exists" in result.output
        assert run.call_count == 2

    def test_docker_run_fails(self, which, run):
        run.side_effect = [
            _completed(),
            _completed(stdout=""),
            _completed(returncode=125, stderr="Conflict. The container name is already in use"),
        ]
        result = runner.invoke(app, ["install-probe", "--yes"])
        assert result.exit_code == 1
        assert "Conflict" in result.output
