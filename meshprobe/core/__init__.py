"""
Measurement session engine.
"""

from meshprobe.core.config import AppConfig
from meshprobe.core.context import Context
from meshprobe.core.history import SessionHistory
from meshprobe.core.locator import LocatorResolver, parse_locator
from meshprobe.core.orchestrator import CancelToken, SessionOrchestrator

__all__ = [
    "AppConfig",
    "CancelToken",
    "Context",
    "LocatorResolver",
    "SessionHistory",
    "SessionOrchestrator",
    "parse_locator",
]
