"""
Storage and logging components.
"""

from meshprobe.storage.logger import setup_logging
from meshprobe.storage.measurement_log import MeasurementLog
from meshprobe.storage.profile import ProfileStore

__all__ = [
    "setup_logging",
    "MeasurementLog",
    "ProfileStore",
]
