"""
Hot reload: configuration byte sources and the supervisor that swaps snapshots.
"""

from .sources import ConfigSource, FileConfigSource, HTTPConfigSource, StaticConfigSource
from .supervisor import ConfigReloader, config_digest

__all__ = [
    "ConfigSource",
    "FileConfigSource",
    "HTTPConfigSource",
    "StaticConfigSource",
    "ConfigReloader",
    "config_digest",
]
