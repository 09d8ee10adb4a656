"""
Shared utilities for the RBAC decision engine.

This package aggregates the cross-cutting building blocks used by
``service_rbac``:

- config: Host settings via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types, responses and sanitization

Do not import from service_* packages into shared/.
"""
