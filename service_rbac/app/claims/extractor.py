"""
Claim path navigation.

Three path grammars are detected automatically:

- ``roles[0]``          bracketed index into a sequence claim
- ``permissions.role``  dotted walk through nested maps
- ``role``              single key lookup

The key in front of a bracket may itself be dotted
(``realm_access.roles[0]``). Failures raise typed
:class:`~shared.errors.ClaimExtractionError` subclasses so callers can
tell an absent role from a malformed path.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any, List

from shared.errors import (
    ArrayIndexOutOfBoundsError,
    ClaimPathNotFoundError,
    EmptyClaimPathError,
    InvalidIndexSyntaxError,
    NonIndexableValueError,
)


_INDEX_RE = re.compile(r"\s*-?\d+\s*")


def extract_claim(claims: Any, path: str) -> Any:
    """Return the value found at ``path`` inside ``claims``."""
    if not path:
        raise EmptyClaimPathError()

    if "[" in path or "]" in path:
        return _extract_indexed(claims, path)

    if "." in path:
        return _extract_nested(claims, path.split("."))

    return _lookup(claims, path, path)


def _lookup(container: Any, key: str, segment: str) -> Any:
    if not isinstance(container, Mapping):
        raise NonIndexableValueError(segment, "a map")
    if key not in container:
        raise ClaimPathNotFoundError(segment)
    return container[key]


def _extract_nested(claims: Any, parts: List[str]) -> Any:
    current = claims
    for i, part in enumerate(parts):
        current = _lookup(current, part, ".".join(parts[: i + 1]))
    return current


def _extract_indexed(claims: Any, path: str) -> Any:
    open_at = path.find("[")
    if open_at <= 0 or not path.endswith("]") or path.count("[") != 1 or path.count("]") != 1:
        raise InvalidIndexSyntaxError(path)

    key = path[:open_at]
    index_text = path[open_at + 1:-1]
    if not _INDEX_RE.fullmatch(index_text):
        raise InvalidIndexSyntaxError(path)
    index = int(index_text)

    value = _extract_nested(claims, key.split("."))
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise NonIndexableValueError(key, "an array")

    if index < 0 or index >= len(value):
        raise ArrayIndexOutOfBoundsError(index, len(value))

    return value[index]
