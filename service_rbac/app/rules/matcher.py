"""
Endpoint matching.

Finds the rule governing a request among three tiers, tried in order:

1. exact literal paths, through a ``METHOD:path`` index;
2. parameterized templates such as ``/users/{id}``, ``/users/{id:[0-9]+}``
   or ``/files/{path:.*}``, compiled once at build time;
3. regular expressions, compiled once at build time and searched against
   the whole request path.

Every tier filters on method before testing the path. No match means no
requirement is configured; deciding what that implies is the engine's job.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from shared.errors import PatternSyntaxError
from shared.logging import get_logger
from .models import ALL_METHODS, EndpointRule


logger = get_logger("rbac.matcher")

DEFAULT_VARIABLE_PATTERN = "[^/]+"

TIER_EXACT = "exact"
TIER_TEMPLATE = "template"
TIER_REGEX = "regex"


@dataclass(frozen=True)
class EndpointMatch:
    """The governing rule for a request."""

    rule: EndpointRule
    tier: str

    @property
    def public(self) -> bool:
        return self.rule.public

    @property
    def route(self) -> str:
        return self.rule.pattern


@dataclass(frozen=True)
class _CompiledRule:
    position: int
    rule: EndpointRule
    pattern: Pattern[str]


def is_template(path: str) -> bool:
    """Any brace marks a template, so malformed ones are never taken literally."""
    return "{" in path or "}" in path


def validate_template(template: str) -> None:
    """Reject unbalanced or misplaced placeholder braces."""
    depth = 0
    for char in template:
        if char == "{":
            depth += 1
        elif char == "}":
            if depth == 0:
                raise PatternSyntaxError(template, "unbalanced braces in pattern")
            depth -= 1
    if depth:
        raise PatternSyntaxError(template, "unbalanced braces in pattern")


def _split_template(template: str) -> List[Tuple[bool, str]]:
    """Split into (is_variable, text) chunks. Braces inside a variable nest."""
    chunks: List[Tuple[bool, str]] = []
    depth = 0
    start = 0
    for index, char in enumerate(template):
        if char == "{":
            if depth == 0:
                if index > start:
                    chunks.append((False, template[start:index]))
                start = index + 1
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                chunks.append((True, template[start:index]))
                start = index + 1
    if start < len(template):
        chunks.append((False, template[start:]))
    return chunks


def compile_template(template: str) -> Pattern[str]:
    """Compile a ``{name}`` / ``{name:regex}`` template into an anchored pattern."""
    validate_template(template)

    parts = []
    for is_variable, text in _split_template(template):
        if not is_variable:
            parts.append(re.escape(text))
            continue

        name, _, constraint = text.partition(":")
        if not name.strip():
            raise PatternSyntaxError(template, "missing variable name in pattern")
        parts.append(f"(?:{constraint or DEFAULT_VARIABLE_PATTERN})")

    try:
        return re.compile("".join(parts))
    except re.error as exc:
        raise PatternSyntaxError(template, f"invalid variable constraint ({exc})") from exc


def compile_regex(expression: str) -> Pattern[str]:
    try:
        return re.compile(expression)
    except re.error as exc:
        raise PatternSyntaxError(expression, f"invalid regular expression ({exc})") from exc


def _exact_key(method: str, path: str) -> str:
    return f"{method}:{path}"


class EndpointMatcher:
    """Compiled, read-only index over a list of endpoint rules."""

    def __init__(self, rules: Iterable[EndpointRule]):
        self._rules: Tuple[EndpointRule, ...] = tuple(rules)
        self._exact: Dict[str, Tuple[int, EndpointRule]] = {}
        self._templates: List[_CompiledRule] = []
        self._regexes: List[_CompiledRule] = []

        for position, rule in enumerate(self._rules):
            if rule.regex:
                self._regexes.append(_CompiledRule(position, rule, compile_regex(rule.regex)))
            elif is_template(rule.path):
                self._templates.append(_CompiledRule(position, rule, compile_template(rule.path)))
            else:
                self._index_exact(position, rule)

        logger.debug(
            "Endpoint matcher built",
            exact=len(self._exact),
            templates=len(self._templates),
            regexes=len(self._regexes),
        )

    def _index_exact(self, position: int, rule: EndpointRule) -> None:
        methods = [ALL_METHODS] if rule.matches_all_methods else rule.methods
        for method in methods:
            # First declared rule wins on duplicate keys
            self._exact.setdefault(_exact_key(method, rule.path), (position, rule))

    @property
    def rules(self) -> Tuple[EndpointRule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def match(self, method: str, path: str) -> Optional[EndpointMatch]:
        """Return the governing rule for ``method`` + ``path``, or ``None``."""
        method = method.upper()

        exact = self._match_exact(method, path)
        if exact is not None:
            return EndpointMatch(exact, TIER_EXACT)

        for compiled in self._templates:
            if compiled.rule.allows_method(method) and compiled.pattern.fullmatch(path):
                return EndpointMatch(compiled.rule, TIER_TEMPLATE)

        for compiled in self._regexes:
            if compiled.rule.allows_method(method) and compiled.pattern.search(path):
                return EndpointMatch(compiled.rule, TIER_REGEX)

        return None

    def _match_exact(self, method: str, path: str) -> Optional[EndpointRule]:
        candidates = [
            hit for hit in (
                self._exact.get(_exact_key(method, path)),
                self._exact.get(_exact_key(ALL_METHODS, path)),
            )
            if hit is not None
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda hit: hit[0])[1]
