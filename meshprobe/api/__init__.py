"""
Probe service client, token store and response cache.
"""

from meshprobe.api.auth import AuthClient, TokenStore
from meshprobe.api.cache import ResponseCache
from meshprobe.api.client import ProbeApiClient

__all__ = [
    "AuthClient",
    "ProbeApiClient",
    "ResponseCache",
    "TokenStore",
]
