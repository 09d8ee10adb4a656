"""
Authorization decision engine.

A :class:`DecisionEngine` holds one immutable :class:`ConfigSnapshot` and
answers allow/deny for each :class:`AccessRequest`. Reloads replace the
snapshot reference as a whole; a decision reads the reference once and
works against that bundle until it returns.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from opentelemetry import trace

from shared.errors import AccessDeniedError, RoleNotFoundError, ClaimExtractionError, sanitize_error
from shared.logging import correlation_id, get_logger
from shared.metrics import MetricsCollector
from .cache.role_cache import RoleCache, header_value, is_shared_identity
from .claims.extractor import extract_claim
from .rules.matcher import EndpointMatch, EndpointMatcher
from .rules.models import RBACConfig
from .rules.resolver import RoleGraph


REASON_CONFIG_NOT_LOADED = "config-not-loaded"
REASON_PUBLIC_ENDPOINT = "public-endpoint"
REASON_ENDPOINT_NOT_FOUND = "endpoint-not-found"
REASON_ROLE_NOT_FOUND = "role-not-found"
REASON_PERMISSION_BASED = "permission-based"
REASON_DENIED = ""

STATUS_ACCEPTED = "ACC"
STATUS_REJECTED = "REJ"

UNMATCHED_ROUTE = "<unmatched>"


@dataclass(frozen=True)
class ConfigSnapshot:
    """Resolved roles plus the compiled endpoint index, swapped as one unit."""

    roles: RoleGraph
    endpoints: EndpointMatcher
    role_header: Optional[str] = None
    jwt_claim_path: Optional[str] = None
    digest: Optional[str] = None
    loaded_at: float = field(default_factory=time.time)


def build_snapshot(config: RBACConfig, digest: Optional[str] = None) -> ConfigSnapshot:
    """Build both indices from a parsed configuration.

    Raises :class:`~shared.errors.PatternSyntaxError` for malformed
    templates or regexes; nothing is returned half-built.
    """
    return ConfigSnapshot(
        roles=RoleGraph(config.roles),
        endpoints=EndpointMatcher(config.endpoints),
        role_header=config.role_header or None,
        jwt_claim_path=config.jwt_claim_path or None,
        digest=digest,
    )


@dataclass(frozen=True)
class AccessRequest:
    """What the engine needs to know about one inbound request."""

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    claims: Optional[Mapping[str, Any]] = None
    identity: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    """Structured record produced for every request."""

    method: str
    path: str
    route: str
    role: Optional[str]
    allowed: bool
    reason: str
    error: Optional[str] = None

    @property
    def status(self) -> str:
        return STATUS_ACCEPTED if self.allowed else STATUS_REJECTED

    @property
    def role_missing(self) -> bool:
        return self.reason == REASON_ROLE_NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "route": self.route,
            "role": self.role,
            "allowed": self.allowed,
            "reason": self.reason,
            "error": self.error,
            "status": self.status,
        }


DecisionSink = Callable[[Decision], None]


class DecisionEngine:
    """Per-request authorization against the active snapshot."""

    def __init__(
        self,
        snapshot: Optional[ConfigSnapshot] = None,
        role_cache: Optional[RoleCache] = None,
        metrics: Optional[MetricsCollector] = None,
        sinks: Iterable[DecisionSink] = (),
        tracer: Optional[trace.Tracer] = None,
    ):
        self.logger = get_logger("rbac.engine")
        self.audit_logger = get_logger("rbac.audit")
        self.role_cache = role_cache
        self.metrics = metrics
        self.tracer = tracer or trace.get_tracer("rbac")
        self._sinks: List[DecisionSink] = list(sinks)
        self._snapshot = snapshot

    @property
    def snapshot(self) -> Optional[ConfigSnapshot]:
        return self._snapshot

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def load_config(self, config: RBACConfig, digest: Optional[str] = None) -> ConfigSnapshot:
        """Build a snapshot from ``config`` and make it active."""
        snapshot = build_snapshot(config, digest)
        self.swap(snapshot)
        return snapshot

    def swap(self, snapshot: ConfigSnapshot) -> None:
        """Replace the active snapshot with a single reference assignment."""
        self._snapshot = snapshot
        self.logger.info(
            "RBAC configuration applied",
            roles=len(snapshot.roles),
            endpoints=len(snapshot.endpoints),
            digest=snapshot.digest,
        )

    def add_sink(self, sink: DecisionSink) -> None:
        self._sinks.append(sink)

    def has_permission(self, role: Optional[str], permission: str) -> bool:
        """Exact permission check against the active snapshot."""
        snapshot = self._snapshot
        if snapshot is None or not role:
            return False
        return snapshot.roles.has_permission(role, permission)

    def decide(self, request: AccessRequest) -> Decision:
        """Return the allow/deny decision for ``request``. Never raises."""
        start_time = time.perf_counter()
        snapshot = self._snapshot

        with self.tracer.start_as_current_span("rbac.authorize") as span:
            span.set_attribute("http.method", request.method.upper())
            try:
                decision = self._evaluate(snapshot, request)
            except Exception as e:
                self.logger.error(
                    "Authorization error",
                    method=request.method,
                    path=request.path,
                    error=str(e),
                    exc_info=True,
                )
                decision = Decision(
                    method=request.method,
                    path=request.path,
                    route=UNMATCHED_ROUTE,
                    role=None,
                    allowed=False,
                    reason=REASON_DENIED,
                    error=sanitize_error(e),
                )

            span.set_attribute("http.route", decision.route)
            span.set_attribute("rbac.authorized", decision.allowed)
            span.set_attribute("rbac.reason", decision.reason)
            if decision.error:
                span.set_attribute("rbac.error", decision.error)

            self._emit(decision, time.perf_counter() - start_time)

        return decision

    def _evaluate(self, snapshot: Optional[ConfigSnapshot], request: AccessRequest) -> Decision:
        if snapshot is None:
            return self._decision(request, None, None, True, REASON_CONFIG_NOT_LOADED)

        match = snapshot.endpoints.match(request.method, request.path)
        if match is None:
            return self._decision(request, None, None, False, REASON_ENDPOINT_NOT_FOUND)

        if match.public:
            return self._decision(request, match, None, True, REASON_PUBLIC_ENDPOINT)

        role = self._resolve_role(snapshot, request)
        if role is None:
            return self._decision(
                request, match, None, False, REASON_ROLE_NOT_FOUND,
                error=RoleNotFoundError().message,
            )

        if snapshot.roles.has_any_permission(role, match.rule.required_permissions):
            return self._decision(request, match, role, True, REASON_PERMISSION_BASED)

        return self._decision(
            request, match, role, False, REASON_DENIED,
            error=AccessDeniedError().message,
        )

    def _resolve_role(self, snapshot: ConfigSnapshot, request: AccessRequest) -> Optional[str]:
        """Role presented on the request, falling back to the cached one.

        A role carried by the request always wins and refreshes the cache.
        Remote-address identities never read or write the cache.
        """
        cache = self.role_cache
        key = request.identity
        cacheable = cache is not None and bool(key) and not is_shared_identity(key)

        role = self.extract_role(snapshot, request)
        if role is not None:
            if cacheable:
                cache.set(key, role)
            return role

        if cacheable:
            cached = cache.get(key)
            self._count("rbac_role_cache_lookups_total", result="hit" if cached else "miss")
            if cached:
                return cached

        self._count("rbac_role_extraction_failures_total")
        return None

    def extract_role(self, snapshot: ConfigSnapshot, request: AccessRequest) -> Optional[str]:
        """Role from claims when a claim path is set, otherwise from the role header."""
        if snapshot.jwt_claim_path:
            if request.claims is None:
                return None
            try:
                value = extract_claim(request.claims, snapshot.jwt_claim_path)
            except ClaimExtractionError as e:
                self.logger.debug("Role claim not extracted", error=e.message, code=e.code)
                return None
            if value is None:
                return None
            role = value if isinstance(value, str) else str(value)
            return role or None

        if snapshot.role_header:
            return header_value(request.headers, snapshot.role_header)

        return None

    def _decision(
        self,
        request: AccessRequest,
        match: Optional[EndpointMatch],
        role: Optional[str],
        allowed: bool,
        reason: str,
        error: Optional[str] = None,
    ) -> Decision:
        return Decision(
            method=request.method,
            path=request.path,
            route=match.route if match is not None else UNMATCHED_ROUTE,
            role=role,
            allowed=allowed,
            reason=reason,
            error=error,
        )

    def _emit(self, decision: Decision, duration: float) -> None:
        self.audit_logger.debug(
            "Authorization decision",
            correlation_id=correlation_id(),
            method=decision.method,
            path=decision.path,
            route=decision.route,
            role=decision.role,
            status=decision.status,
            reason=decision.reason,
        )

        if self.metrics is not None:
            self.metrics.record_decision(decision.allowed, decision.reason, duration)

        for sink in self._sinks:
            try:
                sink(decision)
            except Exception as e:
                self.logger.error("Decision sink failed", sink=repr(sink), error=str(e))

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)
