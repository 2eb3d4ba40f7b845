"""
Profile persistence: the stored access token.
"""

import json
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from meshprobe.core.models import Token


class ProfileStore:
    """Load and persist the user's token in a JSON profile file."""

    def __init__(self, profile_file: Path):
        self.profile_file = profile_file

    def _read(self) -> dict:
        if not self.profile_file.exists():
            return {}
        try:
            with open(self.profile_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable profile {self.profile_file}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self.profile_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.profile_file.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        tmp.replace(self.profile_file)
        try:
            self.profile_file.chmod(0o600)
        except OSError:
            pass

    def load_token(self) -> Optional[Token]:
        raw = self._read().get("token")
        if not raw:
            return None
        try:
            return Token.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid token in {self.profile_file}: {e}")
            return None

    def persist_token(self, token: Token) -> None:
        data = self._read()
        data["token"] = token.model_dump(mode="json", by_alias=True)
        self._write(data)
        logger.debug(f"Saved token to {self.profile_file}")

    def clear_token(self) -> None:
        data = self._read()
        if data.pop("token", None) is not None:
            self._write(data)

    def token_refreshed(self, token: Token) -> None:
        """Persist tokens reported by the TokenStore."""
        self.persist_token(token)
