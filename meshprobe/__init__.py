"""
meshprobe - network measurements from a distributed probe network.
"""

from meshprobe.__version__ import __version__
from meshprobe.core.config import AppConfig
from meshprobe.core.context import Context
from meshprobe.core.history import SessionHistory
from meshprobe.core.orchestrator import CancelToken, SessionOrchestrator

__all__ = [
    "AppConfig",
    "CancelToken",
    "Context",
    "SessionHistory",
    "SessionOrchestrator",
    "__version__",
]
