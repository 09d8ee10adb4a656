"""
Tests for the shared configuration, logging, error and metrics helpers.
"""

import logging

import pytest
from pydantic import ValidationError
from prometheus_client import CollectorRegistry

from shared.config import DEFAULT_RELOAD_INTERVAL_SECONDS, RBACSettings, get_settings
from shared.errors import (
    GENERIC_AUTHORIZATION_ERROR,
    AccessDeniedError,
    ArrayIndexOutOfBoundsError,
    ConfigurationError,
    PatternSyntaxError,
    RoleNotFoundError,
    UnsupportedFormatError,
    sanitize_error,
)
from shared.logging import (
    NO_TRACE,
    add_correlation_context,
    clear_context,
    configure_logging,
    correlation_id,
    get_logger,
    set_identity,
    set_request_id,
)
from shared import metrics as metrics_module
from shared.metrics import MetricsCollector


class TestSettings:
    """Test cases for RBACSettings."""

    def test_defaults(self, monkeypatch):
        for name in ("RBAC_CONFIG_FILE", "RBAC_CONFIG_URL", "RBAC_HOT_RELOAD"):
            monkeypatch.delenv(name, raising=False)

        settings = RBACSettings(_env_file=None)

        assert settings.service_name == "rbac"
        assert settings.config_file is None
        assert not settings.hot_reload
        assert settings.reload_interval_seconds == DEFAULT_RELOAD_INTERVAL_SECONDS
        assert settings.role_cache_ttl_seconds == 0.0

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("RBAC_CONFIG_FILE", "/etc/rbac.yaml")
        monkeypatch.setenv("RBAC_HOT_RELOAD", "true")
        monkeypatch.setenv("RBAC_ROLE_CACHE_TTL_SECONDS", "120")

        settings = get_settings()

        assert settings.config_file == "/etc/rbac.yaml"
        assert settings.hot_reload
        assert settings.role_cache_ttl_seconds == 120.0

    def test_log_level_validated(self):
        assert RBACSettings(log_level="DEBUG").log_level == "debug"

        with pytest.raises(ValidationError):
            RBACSettings(log_level="chatty")

    def test_config_format_validated(self):
        assert RBACSettings(config_format="YAML").config_format == "yaml"

        with pytest.raises(ValidationError):
            RBACSettings(config_format="toml")


class TestErrors:
    """Test cases for the error taxonomy."""

    def test_known_errors_pass_through(self):
        assert sanitize_error(RoleNotFoundError()) == "unauthorized: role not found"
        assert sanitize_error(AccessDeniedError()) == "forbidden: access denied"

    @pytest.mark.parametrize("error", [
        RuntimeError("connection string postgres://secret"),
        KeyError("internal"),
        ConfigurationError("bad"),
    ])
    def test_unknown_errors_replaced(self, error):
        assert sanitize_error(error) == GENERIC_AUTHORIZATION_ERROR

    def test_none_passes_through(self):
        assert sanitize_error(None) is None

    def test_to_response(self):
        response = AccessDeniedError().to_response()

        assert response.code == "ACCESS_DENIED"
        assert response.message == "forbidden: access denied"
        assert response.trace_id is None

    def test_configuration_error_family(self):
        assert isinstance(UnsupportedFormatError(".toml"), ConfigurationError)
        error = PatternSyntaxError("/a/{b", "unbalanced braces in pattern")
        assert error.message == "unbalanced braces in pattern: /a/{b"
        assert error.details == {"pattern": "/a/{b"}

    def test_index_error_details(self):
        error = ArrayIndexOutOfBoundsError(3, 1)

        assert error.code == "CLAIM_EXTRACTION_ERROR"
        assert error.details == {"index": 3, "length": 1}


class TestLogging:
    """Test cases for structured logging helpers."""

    def test_configure_and_log(self, caplog):
        configure_logging("rbac-test", log_level="debug")

        with caplog.at_level(logging.INFO):
            get_logger("rbac.test").info("configured", key="value")

        assert "configured" in caplog.text
        assert "rbac-test" in caplog.text

    def test_correlation_context(self):
        request_id = set_request_id()
        set_identity("rbac:user:1")
        try:
            event = add_correlation_context(None, "info", {})
            assert event == {"request_id": request_id, "identity": "rbac:user:1"}
        finally:
            clear_context()

        assert add_correlation_context(None, "info", {}) == {}

    def test_correlation_id_without_span(self):
        assert correlation_id() == NO_TRACE


class TestMetrics:
    """Test cases for MetricsCollector."""

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def metrics(self, registry):
        return MetricsCollector(registry=registry)

    def test_denied_reason_label(self, metrics, registry):
        metrics.record_decision(False, "", 0.001)

        assert registry.get_sample_value(
            "rbac_decisions_total", {"decision": "deny", "reason": "denied"}
        ) == 1.0

    def test_record_reload(self, metrics, registry):
        metrics.record_reload("applied")
        metrics.record_reload("applied")

        assert registry.get_sample_value("rbac_config_reloads_total", {"status": "applied"}) == 2.0

    def test_time_operation(self, metrics, registry):
        with metrics.time_operation("rbac_decision_duration_seconds"):
            pass

        assert registry.get_sample_value("rbac_decision_duration_seconds_count") == 1.0

    def test_unknown_metric_ignored(self, metrics):
        metrics.increment_counter("not_a_metric", label="x")
        metrics.observe_histogram("not_a_metric", 1.0)

        assert metrics.get_metric("not_a_metric") is None

    def test_exposition_left_to_host(self, metrics):
        assert not hasattr(metrics, "start_metrics_server")
        assert not hasattr(metrics_module, "get_metrics_collector")
