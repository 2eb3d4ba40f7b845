"""Version information for meshprobe."""

__version__ = "1.0.0"
__version_info__ = (1, 0, 0)

# Release information
__license__ = "MIT"
__description__ = "Run network measurements from a distributed probe network"
