"""
Configuration decoding and file loading.
"""

import json
import os
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from shared.errors import ConfigurationError, UnsupportedFormatError
from shared.logging import get_logger
from .rules.models import RBACConfig


logger = get_logger("rbac.loader")

FORMAT_JSON = "json"
FORMAT_YAML = "yaml"

DEFAULT_CONFIG_PATHS = (
    os.path.join("configs", "rbac.json"),
    os.path.join("configs", "rbac.yaml"),
    os.path.join("configs", "rbac.yml"),
)

_EXTENSIONS = {
    "": FORMAT_JSON,
    ".json": FORMAT_JSON,
    ".yaml": FORMAT_YAML,
    ".yml": FORMAT_YAML,
}


def detect_format(path: str) -> str:
    """Map a file extension to a decoder name."""
    extension = os.path.splitext(path)[1].lower()
    try:
        return _EXTENSIONS[extension]
    except KeyError:
        raise UnsupportedFormatError(extension) from None


def _decode(data: Union[bytes, str], fmt: str) -> Any:
    if fmt == FORMAT_JSON:
        try:
            return json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"failed to parse JSON config: {e}", {"format": fmt}) from e

    if fmt in (FORMAT_YAML, "yml"):
        try:
            return yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"failed to parse YAML config: {e}", {"format": fmt}) from e

    raise UnsupportedFormatError(fmt)


def parse_config(data: Union[bytes, str], fmt: str = FORMAT_JSON) -> RBACConfig:
    """Decode ``data`` and validate it against the configuration schema."""
    raw = _decode(data, (fmt or FORMAT_JSON).lower().lstrip("."))
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError("configuration root must be a mapping", {"format": fmt})

    try:
        config = RBACConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            "invalid RBAC configuration",
            {"errors": [_format_error(err) for err in e.errors()]},
        ) from e

    for rule in config.endpoints:
        if rule.allowed_roles:
            logger.warning(
                "allowedRoles is ignored; authorization is permission-based",
                route=rule.pattern,
                allowed_roles=rule.allowed_roles,
            )

    return config


def _format_error(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def load_permissions(path: str) -> RBACConfig:
    """Read ``path`` and parse it using the format its extension implies."""
    fmt = detect_format(path)
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as e:
        raise ConfigurationError(f"failed to read config file: {path}", {"path": path}) from e

    config = parse_config(data, fmt)
    logger.info(
        "Loaded RBAC configuration",
        path=path,
        roles=len(config.roles),
        endpoints=len(config.endpoints),
    )
    return config


def resolve_config_path(path: Optional[str] = None) -> Optional[str]:
    """The explicit path, or the first default location that exists."""
    if path:
        return path
    for candidate in DEFAULT_CONFIG_PATHS:
        if os.path.isfile(candidate):
            return candidate
    return None
