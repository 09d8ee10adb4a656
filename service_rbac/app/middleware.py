"""
FastAPI / Starlette integration.

Nothing registers itself on import. A host builds the engine (usually via
:func:`create_engine`) and adds the middleware explicitly::

    runtime = create_engine(get_settings())
    app.add_middleware(RBACMiddleware, engine=runtime.engine)
    runtime.start()

An upstream authentication layer is expected to put verified claims on
``request.state.jwt_claims`` when claim-based extraction is configured.
"""

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Union

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from shared.config import RBACSettings, get_settings
from shared.errors import AccessDeniedError, AccessLayerException, RoleNotFoundError
from shared.logging import get_logger, set_identity
from shared.metrics import MetricsCollector
from .cache.role_cache import RoleCache, identity_key
from .engine import AccessRequest, Decision, DecisionEngine, DecisionSink
from .loader import parse_config, resolve_config_path
from .reload.sources import ConfigSource, FileConfigSource, HTTPConfigSource
from .reload.supervisor import ConfigReloader, config_digest


ErrorHandler = Callable[[Request, Decision], Union[Response, Awaitable[Response]]]


def build_access_request(request: Request) -> AccessRequest:
    """Translate a Starlette request into the engine's request view."""
    remote_addr = request.client.host if request.client else None
    return AccessRequest(
        method=request.method,
        path=request.url.path,
        headers=request.headers,
        claims=getattr(request.state, "jwt_claims", None),
        identity=identity_key(request.headers, remote_addr),
    )


def error_for(decision: Decision) -> AccessLayerException:
    """Protocol-facing error for a denied decision."""
    if decision.role_missing:
        return RoleNotFoundError()
    return AccessDeniedError(decision.error or AccessDeniedError().message)


def status_for(error: AccessLayerException) -> int:
    return 401 if isinstance(error, RoleNotFoundError) else 403


class RBACMiddleware(BaseHTTPMiddleware):
    """Authorizes every request before it reaches a route handler."""

    def __init__(self, app, engine: DecisionEngine, error_handler: Optional[ErrorHandler] = None):
        super().__init__(app)
        self.engine = engine
        self.error_handler = error_handler
        self.logger = get_logger("rbac.middleware")

    async def dispatch(self, request: Request, call_next):
        access_request = build_access_request(request)
        set_identity(access_request.identity)

        decision = self.engine.decide(access_request)
        request.state.rbac_decision = decision

        if decision.allowed:
            if decision.role:
                request.state.rbac_role = decision.role
            return await call_next(request)

        if self.error_handler is not None:
            response = self.error_handler(request, decision)
            if inspect.isawaitable(response):
                response = await response
            return response

        error = error_for(decision)
        self.logger.info(
            "Request rejected",
            method=decision.method,
            path=decision.path,
            route=decision.route,
            reason=decision.reason,
            code=error.code,
        )
        return JSONResponse(
            status_code=status_for(error),
            content=error.to_response().model_dump(),
        )


def _request_role(request: Request) -> str:
    role = getattr(request.state, "rbac_role", None)
    if not role:
        error = RoleNotFoundError()
        raise HTTPException(status_code=401, detail=error.to_response().model_dump())
    return role


def _forbidden() -> HTTPException:
    return HTTPException(status_code=403, detail=AccessDeniedError().to_response().model_dump())


def require_role(role: str):
    """Dependency allowing only callers whose role is exactly ``role``."""

    async def dependency(request: Request) -> str:
        current = _request_role(request)
        if current != role:
            raise _forbidden()
        return current

    return dependency


def require_any_role(roles: Iterable[str]):
    """Dependency allowing callers holding any of ``roles``."""
    accepted = frozenset(roles)

    async def dependency(request: Request) -> str:
        current = _request_role(request)
        if current not in accepted:
            raise _forbidden()
        return current

    return dependency


def require_permission(engine: DecisionEngine, permission: str):
    """Dependency checking a resolved (inherited) permission of the caller's role."""

    async def dependency(request: Request) -> str:
        current = _request_role(request)
        if not engine.has_permission(current, permission):
            raise _forbidden()
        return current

    return dependency


@dataclass
class RBACRuntime:
    """An engine together with the optional pieces wired around it."""

    engine: DecisionEngine
    source: Optional[ConfigSource] = None
    role_cache: Optional[RoleCache] = None
    reloader: Optional[ConfigReloader] = None

    def start(self) -> None:
        if self.reloader is not None:
            self.reloader.start()

    def stop(self) -> None:
        if self.reloader is not None:
            self.reloader.stop()
        elif self.source is not None:
            self.source.close()
        if self.role_cache is not None:
            self.role_cache.stop()


def _build_source(settings: RBACSettings) -> Optional[ConfigSource]:
    if settings.config_url:
        return HTTPConfigSource(
            settings.config_url,
            fmt=settings.config_format,
            timeout=settings.http_timeout_seconds,
        )
    path = resolve_config_path(settings.config_file)
    if path:
        return FileConfigSource(path, fmt=settings.config_format)
    return None


def create_engine(
    settings: Optional[RBACSettings] = None,
    metrics: Optional[MetricsCollector] = None,
    sinks: Iterable[DecisionSink] = (),
    source: Optional[ConfigSource] = None,
) -> RBACRuntime:
    """Build an engine and load its initial configuration.

    A configuration error in the initial load propagates; the host must
    not start serving with a malformed policy. With no source at all the
    engine starts unconfigured and allows every request.
    """
    settings = settings or get_settings()
    logger = get_logger("rbac.factory")

    role_cache = RoleCache(settings.role_cache_ttl_seconds) if settings.role_cache_ttl_seconds > 0 else None
    engine = DecisionEngine(role_cache=role_cache, metrics=metrics, sinks=sinks)

    source = source or _build_source(settings)
    if source is None:
        logger.warning("No RBAC configuration found; authorization is disabled")
        return RBACRuntime(engine=engine, role_cache=role_cache)

    data = source.fetch_config()
    engine.load_config(parse_config(data, source.format), digest=config_digest(data))

    reloader = None
    if settings.hot_reload:
        reloader = ConfigReloader(
            engine,
            source,
            interval_seconds=settings.reload_interval_seconds,
            metrics=metrics,
        )

    return RBACRuntime(engine=engine, source=source, role_cache=role_cache, reloader=reloader)


__all__ = [
    "RBACMiddleware",
    "RBACRuntime",
    "build_access_request",
    "create_engine",
    "error_for",
    "require_any_role",
    "require_permission",
    "require_role",
]
