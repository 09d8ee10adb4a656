"""
Role graph resolution.

Flattens each role's own permissions plus everything it inherits,
transitively, into one ordered, de-duplicated tuple. Inheritance cycles
terminate: a role already visited during a walk is not descended again.
Unknown parent names are ignored.
"""

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple

from shared.logging import get_logger
from .models import RoleDefinition


logger = get_logger("rbac.resolver")


def resolve(roles: Iterable[RoleDefinition]) -> Dict[str, Tuple[str, ...]]:
    """Map every role name to its resolved permission tuple."""
    by_name = {role.name: role for role in roles}
    return {name: tuple(_collect_permissions(name, by_name)) for name in by_name}


def _walk(name: str, by_name: Mapping[str, RoleDefinition]) -> List[RoleDefinition]:
    """Pre-order depth-first walk over ``name`` and its ancestors."""
    visited = set()
    order: List[RoleDefinition] = []
    stack = [name]

    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)

        role = by_name.get(current)
        if role is None:
            continue
        order.append(role)
        # Reversed so the first declared parent is walked first
        stack.extend(reversed(role.inherits_from))

    return order


def _collect_permissions(name: str, by_name: Mapping[str, RoleDefinition]) -> List[str]:
    permissions: List[str] = []
    seen = set()
    for role in _walk(name, by_name):
        for permission in role.permissions:
            if permission not in seen:
                seen.add(permission)
                permissions.append(permission)
    return permissions


class RoleGraph:
    """Immutable view of resolved roles, rebuilt on every load."""

    def __init__(self, roles: Iterable[RoleDefinition]):
        roles = list(roles)
        self._definitions = MappingProxyType({role.name: role for role in roles})
        self._permissions = MappingProxyType(resolve(roles))
        self._permission_sets = MappingProxyType(
            {name: frozenset(perms) for name, perms in self._permissions.items()}
        )

        missing = sorted({
            parent
            for role in roles
            for parent in role.inherits_from
            if parent not in self._definitions
        })
        if missing:
            logger.warning("Roles inherit from undefined roles", missing=missing)

    @property
    def permissions(self) -> Mapping[str, Tuple[str, ...]]:
        return self._permissions

    def permissions_for(self, role: str) -> Tuple[str, ...]:
        """Resolved permissions for ``role``; empty for unknown roles."""
        return self._permissions.get(role, ())

    def has_permission(self, role: str, permission: str) -> bool:
        return permission in self._permission_sets.get(role, frozenset())

    def has_any_permission(self, role: str, permissions: Iterable[str]) -> bool:
        """OR semantics, exact string equality only."""
        granted = self._permission_sets.get(role, frozenset())
        return any(permission in granted for permission in permissions)

    def effective_roles(self, role: str) -> Tuple[str, ...]:
        """``role`` followed by every role it inherits from."""
        if not role:
            return ()
        names = [definition.name for definition in _walk(role, self._definitions)]
        return tuple(names) if names else (role,)

    def __contains__(self, role: object) -> bool:
        return role in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
