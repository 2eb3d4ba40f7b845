"""
Configuration management.
"""

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".meshprobe"


def load_config_file() -> dict[str, Any]:
    """
    Load optional config from ~/.meshprobe.yaml or ./.meshprobe.yaml.
    Returns dict with data_dir (Path), verbose (bool), api_min_interval (float),
    limit (int) and from (str) when present.
    Missing keys are omitted so callers can use their own defaults.
    """
    import yaml

    result: dict[str, Any] = {}
    candidates = [
        Path.cwd() / ".meshprobe.yaml",
        Path.home() / ".meshprobe.yaml",
    ]
    raw: dict[str, Any] = {}
    for path in candidates:
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError):
                raw = {}
            break
    if not isinstance(raw, dict) or not raw:
        return result
    if "data_dir" in raw:
        result["data_dir"] = Path(raw["data_dir"]).expanduser().resolve()
    if "verbose" in raw:
        result["verbose"] = bool(raw["verbose"])
    if "from" in raw:
        result["from"] = str(raw["from"])
    for key, cast in (("api_min_interval", float), ("limit", int)):
        if key in raw:
            try:
                result[key] = cast(raw[key])
            except (TypeError, ValueError):
                pass
    return result


class AppConfig(BaseSettings):
    """Application configuration, overridable with MESHPROBE_* variables."""

    model_config = SettingsConfigDict(env_prefix="MESHPROBE_", extra="ignore")

    data_dir: Path = Field(default=DEFAULT_DATA_DIR)
    verbose: bool = False

    api_url: str = "https://api.globalping.io/v1"
    auth_url: str = "https://auth.globalping.io/oauth"
    dashboard_url: str = "https://globalping.io"
    auth_client_id: str = ""
    auth_client_secret: str = ""
    # A pinned token is used as-is and never refreshed.
    token: Optional[str] = None

    api_min_interval: float = 0.5
    request_timeout: float = 30.0
    cache_ttl: float = 30.0
    cache_sweep_interval: float = 10.0

    @field_validator("data_dir", mode="before")
    @classmethod
    def validate_data_dir(cls, v):
        """Validate and convert data_dir to Path."""
        if v is None:
            return DEFAULT_DATA_DIR
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    def model_post_init(self, __context):
        """Ensure the data directory exists and is resolved to an absolute path."""
        self.data_dir = self.data_dir.resolve()
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def profile_file(self) -> Path:
        return self.data_dir / "profile.json"

    @property
    def measurement_log_file(self) -> Path:
        return self.data_dir / "measurements.csv"
