"""
Configuration schema for the RBAC engine.

Field names accept both the camelCase spelling used in JSON/YAML files
(``inheritsFrom``, ``requiredPermissions``) and snake_case.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ALL_METHODS = "*"


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class RoleDefinition(BaseModel):
    """A named bundle of permissions, possibly inheriting from other roles."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    name: str = Field(..., min_length=1, description="Unique role name")
    permissions: List[str] = Field(default_factory=list, description="resource:action strings")
    inherits_from: List[str] = Field(
        default_factory=list, alias="inheritsFrom", description="Parent role names"
    )

    @field_validator("permissions", "inherits_from", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _none_to_list(v)


class EndpointRule(BaseModel):
    """Authorization requirement bound to HTTP methods and one path matcher."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    path: Optional[str] = Field(None, description="Literal path or {param} template")
    regex: Optional[str] = Field(None, description="Regular expression over the request path")
    methods: List[str] = Field(default_factory=list, description="Empty or '*' means all methods")
    required_permissions: List[str] = Field(
        default_factory=list, alias="requiredPermissions",
        description="Any one of these grants access"
    )
    public: bool = Field(False, description="Bypass role and permission checks")
    allowed_roles: List[str] = Field(
        default_factory=list, alias="allowedRoles",
        description="Accepted for compatibility; grants nothing"
    )

    @field_validator("methods", "required_permissions", "allowed_roles", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _none_to_list(v)

    @field_validator("methods")
    @classmethod
    def normalize_methods(cls, v: List[str]) -> List[str]:
        return [m.strip().upper() for m in v if m and m.strip()]

    @model_validator(mode="after")
    def check_rule(self) -> "EndpointRule":
        if bool(self.path) == bool(self.regex):
            raise ValueError("endpoint must specify exactly one of 'path' or 'regex'")
        if self.public and self.required_permissions:
            raise ValueError(f"public endpoint {self.pattern} must not specify requiredPermissions")
        if not self.public and not self.required_permissions:
            raise ValueError(
                f"endpoint {self.pattern} must specify requiredPermissions (or be public)"
            )
        return self

    @property
    def pattern(self) -> str:
        """The configured path or regex, used as the route label."""
        return self.regex or self.path or ""

    @property
    def matches_all_methods(self) -> bool:
        return not self.methods or ALL_METHODS in self.methods

    def allows_method(self, method: str) -> bool:
        """Case-insensitive method filter."""
        return self.matches_all_methods or method.upper() in self.methods


class RBACConfig(BaseModel):
    """Top-level configuration document."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    roles: List[RoleDefinition] = Field(default_factory=list)
    endpoints: List[EndpointRule] = Field(default_factory=list)
    role_header: Optional[str] = Field(None, alias="roleHeader")
    jwt_claim_path: Optional[str] = Field(None, alias="jwtClaimPath")

    @field_validator("roles", "endpoints", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _none_to_list(v)

    @model_validator(mode="after")
    def check_unique_roles(self) -> "RBACConfig":
        seen = set()
        for role in self.roles:
            if role.name in seen:
                raise ValueError(f"duplicate role definition: {role.name}")
            seen.add(role.name)
        return self
