"""Tests for AppConfig."""
import tempfile
from pathlib import Path

import pytest

from meshprobe.cli.main import _load_config
from meshprobe.core.config import AppConfig, load_config_file


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MESHPROBE_DATA_DIR", "MESHPROBE_API_MIN_INTERVAL", "MESHPROBE_TOKEN"):
        monkeypatch.delenv(name, raising=False)


def test_app_config_explicit_data_dir():
    """When data_dir is provided, it is used, resolved and created."""
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "custom"
        config = AppConfig(data_dir=path)
        assert config.data_dir == path.resolve()
        assert config.data_dir.exists()


def test_app_config_data_dir_from_string():
    """data_dir can be passed as a string and is converted to Path."""
    with tempfile.TemporaryDirectory() as tmp:
        config = AppConfig(data_dir=tmp)
        assert config.data_dir == Path(tmp).resolve()
        assert config.profile_file == Path(tmp).resolve() / "profile.json"
        assert config.measurement_log_file == Path(tmp).resolve() / "measurements.csv"


def test_app_config_defaults(tmp_path):
    config = AppConfig(data_dir=tmp_path)
    assert config.api_url == "https://api.globalping.io/v1"
    assert config.api_min_interval == 0.5
    assert config.cache_ttl == 30
    assert config.cache_sweep_interval == 10
    assert config.token is None


def test_app_config_from_environment(tmp_path, monkeypatch):
    """MESHPROBE_* variables override defaults."""
    monkeypatch.setenv("MESHPROBE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("MESHPROBE_API_MIN_INTERVAL", "2")
    monkeypatch.setenv("MESHPROBE_TOKEN", "pinned")
    config = AppConfig()
    assert config.data_dir == tmp_path.resolve()
    assert config.api_min_interval == 2.0
    assert config.token == "pinned"


def test_load_config_file_no_file():
    """When no config file exists, load_config_file returns a dict."""
    result = load_config_file()
    # May be empty or have values if user has ~/.meshprobe.yaml
    assert isinstance(result, dict)


def test_load_config_file_from_cwd(tmp_path, monkeypatch):
    (tmp_path / ".meshprobe.yaml").write_text(
        "data_dir: data\nverbose: true\nfrom: Europe\nlimit: 3\napi_min_interval: 1.5\n"
    )
    monkeypatch.chdir(tmp_path)

    result = load_config_file()

    assert result["data_dir"] == (tmp_path / "data").resolve()
    assert result["verbose"] is True
    assert result["from"] == "Europe"
    assert result["limit"] == 3
    assert result["api_min_interval"] == 1.5


def test_load_config_file_skips_bad_values(tmp_path, monkeypatch):
    (tmp_path / ".meshprobe.yaml").write_text("limit: many\n")
    monkeypatch.chdir(tmp_path)
    assert "limit" not in load_config_file()


def test_environment_wins_over_file(tmp_path, monkeypatch):
    file_dir = tmp_path / "from_file"
    env_dir = tmp_path / "from_env"
    monkeypatch.setenv("MESHPROBE_DATA_DIR", str(env_dir))

    config = _load_config({"data_dir": file_dir, "api_min_interval": 3.0})

    assert config.data_dir == env_dir.resolve()
    assert config.api_min_interval == 3.0
