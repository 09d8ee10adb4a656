"""
Rules package.

Defines the configuration schema and the two indices derived from it:

- models: Pydantic schema for roles, endpoint rules and the config document.
- resolver: Role graph flattening with cycle-safe inheritance.
- matcher: Exact, templated and regex endpoint matching.

Both indices are rebuilt from scratch on every load and never mutated
afterwards, so a snapshot built from them can be shared across threads.
"""

from .models import RBACConfig, RoleDefinition, EndpointRule
from .resolver import RoleGraph, resolve
from .matcher import EndpointMatch, EndpointMatcher

__all__ = [
    "RBACConfig",
    "RoleDefinition",
    "EndpointRule",
    "RoleGraph",
    "resolve",
    "EndpointMatch",
    "EndpointMatcher",
]
