"""
Per-invocation measurement context.
"""

from dataclasses import dataclass, field

from meshprobe.core.history import SessionHistory


@dataclass
class Context:
    """Options of one measurement run, read-only apart from ``history``."""
    cmd: str
    target: str = ""
    ci_mode: bool = False
    locator: str = "world"
    limit: int = 1
    to_json: bool = False
    to_latency: bool = False
    full: bool = False
    share: bool = False
    ipv4: bool = False
    ipv6: bool = False
    api_min_interval: float = 0.5  # seconds between polls, at least
    history: SessionHistory = field(default_factory=SessionHistory)

    @property
    def ip_version(self):
        if self.ipv4:
            return 4
        if self.ipv6:
            return 6
        return None
