"""
Unit tests for role graph resolution.
"""

import pytest

from service_rbac.app.rules.models import RoleDefinition
from service_rbac.app.rules.resolver import RoleGraph, resolve


def role(name, permissions=(), inherits=()):
    return RoleDefinition(name=name, permissions=list(permissions), inheritsFrom=list(inherits))


class TestResolve:
    """Test cases for resolve()."""

    @pytest.fixture
    def editor_roles(self):
        return [
            role("viewer", ["users:read"]),
            role("editor", ["users:write"], ["viewer"]),
        ]

    def test_inherited_permissions_follow_own(self, editor_roles):
        resolved = resolve(editor_roles)

        assert resolved["editor"] == ("users:write", "users:read")
        assert resolved["viewer"] == ("users:read",)

    def test_resolve_is_idempotent(self, editor_roles):
        assert resolve(editor_roles) == resolve(editor_roles)

    def test_transitive_inheritance_in_declaration_order(self):
        roles = [
            role("admin", ["admin:all"], ["editor", "auditor"]),
            role("editor", ["posts:write"], ["viewer"]),
            role("auditor", ["logs:read"]),
            role("viewer", ["posts:read"]),
        ]

        resolved = resolve(roles)

        assert resolved["admin"] == ("admin:all", "posts:write", "posts:read", "logs:read")

    def test_duplicates_removed_keeping_first_position(self):
        roles = [
            role("a", ["x:read", "y:read"], ["b"]),
            role("b", ["y:read", "z:read", "x:read"]),
        ]

        assert resolve(roles)["a"] == ("x:read", "y:read", "z:read")

    def test_cycle_terminates(self):
        roles = [
            role("a", ["a:perm"], ["b"]),
            role("b", ["b:perm"], ["c"]),
            role("c", ["c:perm"], ["a"]),
        ]

        resolved = resolve(roles)

        assert resolved["a"] == ("a:perm", "b:perm", "c:perm")
        assert resolved["b"] == ("b:perm", "c:perm", "a:perm")
        assert resolved["c"] == ("c:perm", "a:perm", "b:perm")

    def test_self_inheritance_terminates(self):
        resolved = resolve([role("loop", ["loop:perm"], ["loop"])])

        assert resolved["loop"] == ("loop:perm",)

    def test_unknown_parent_ignored(self):
        resolved = resolve([role("orphan", ["own:perm"], ["missing"])])

        assert resolved["orphan"] == ("own:perm",)

    def test_wildcard_permissions_are_not_expanded(self):
        resolved = resolve([role("root", ["*:*"])])

        assert resolved["root"] == ("*:*",)

    def test_empty_role_set(self):
        assert resolve([]) == {}


class TestRoleGraph:
    """Test cases for RoleGraph."""

    @pytest.fixture
    def graph(self):
        return RoleGraph([
            role("viewer", ["users:read"]),
            role("editor", ["users:write"], ["viewer"]),
            role("root", ["*:*"]),
        ])

    def test_permissions_for_known_role(self, graph):
        assert graph.permissions_for("editor") == ("users:write", "users:read")

    def test_permissions_for_unknown_role_is_empty(self, graph):
        assert graph.permissions_for("ghost") == ()

    def test_has_permission_uses_exact_equality(self, graph):
        assert graph.has_permission("editor", "users:read")
        assert not graph.has_permission("editor", "users:delete")
        assert not graph.has_permission("root", "users:read")

    def test_has_any_permission(self, graph):
        assert graph.has_any_permission("viewer", ["users:write", "users:read"])
        assert not graph.has_any_permission("viewer", ["users:write"])
        assert not graph.has_any_permission("viewer", [])

    def test_effective_roles(self, graph):
        assert graph.effective_roles("editor") == ("editor", "viewer")
        assert graph.effective_roles("ghost") == ("ghost",)
        assert graph.effective_roles("") == ()

    def test_membership_and_length(self, graph):
        assert "viewer" in graph
        assert "ghost" not in graph
        assert len(graph) == 3

    def test_permissions_view_is_read_only(self, graph):
        with pytest.raises(TypeError):
            graph.permissions["viewer"] = ("users:delete",)
