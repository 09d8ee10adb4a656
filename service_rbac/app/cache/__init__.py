"""
Cache package for the RBAC engine.

Provides an in-process TTL cache of resolved roles keyed by caller
identity, so repeat callers that omit their role still resolve one.
"""

from .role_cache import RoleCache, CachedRoleEntry, identity_key, is_shared_identity, header_value

__all__ = ["RoleCache", "CachedRoleEntry", "identity_key", "is_shared_identity", "header_value"]
