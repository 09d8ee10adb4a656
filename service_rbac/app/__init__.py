"""
RBAC decision engine application package.
"""

from .engine import (
    AccessRequest,
    ConfigSnapshot,
    Decision,
    DecisionEngine,
    build_snapshot,
)
from .loader import load_permissions, parse_config, resolve_config_path

__all__ = [
    "AccessRequest",
    "ConfigSnapshot",
    "Decision",
    "DecisionEngine",
    "build_snapshot",
    "load_permissions",
    "parse_config",
    "resolve_config_path",
]
