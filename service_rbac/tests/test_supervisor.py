"""
Unit tests for configuration sources and the reload supervisor.
"""

import json
import threading
import time
from unittest.mock import MagicMock

import httpx
import pytest
from prometheus_client import CollectorRegistry

from shared.config import DEFAULT_RELOAD_INTERVAL_SECONDS
from shared.errors import ConfigFetchError
from shared.metrics import MetricsCollector
from service_rbac.app.engine import AccessRequest, DecisionEngine
from service_rbac.app.reload.sources import (
    ConfigSource,
    FileConfigSource,
    HTTPConfigSource,
    StaticConfigSource,
)
from service_rbac.app.reload.supervisor import ConfigReloader, config_digest


def config_bytes(permission="users:read"):
    return json.dumps({
        "roles": [{"name": "viewer", "permissions": ["users:read"]}],
        "endpoints": [{"path": "/api/users", "methods": ["GET"], "requiredPermissions": [permission]}],
        "roleHeader": "X-User-Role",
    }).encode()


def viewer_request():
    return AccessRequest("GET", "/api/users", headers={"X-User-Role": "viewer"})


class BlockingSource(StaticConfigSource):
    """Static source whose fetch waits until released and which counts closes."""

    def __init__(self, data):
        super().__init__(data)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.closed = 0

    def fetch_config(self):
        self.entered.set()
        self.release.wait(5.0)
        return super().fetch_config()

    def close(self):
        self.closed += 1


class TestSources:
    """Test cases for configuration byte sources."""

    def test_static_source(self):
        source = StaticConfigSource("roles: []", fmt="yaml")

        assert source.fetch_config() == b"roles: []"
        assert source.format == "yaml"

        source.update(b"{}")
        assert source.fetch_config() == b"{}"

    def test_file_source(self, tmp_path):
        path = tmp_path / "rbac.yaml"
        path.write_text("roles: []")

        source = FileConfigSource(path)

        assert source.fetch_config() == b"roles: []"
        assert source.format == "yaml"
        assert source.name.startswith("file:")

    def test_missing_file(self, tmp_path):
        source = FileConfigSource(tmp_path / "gone.json")

        with pytest.raises(ConfigFetchError) as exc_info:
            source.fetch_config()

        assert exc_info.value.code == "CONFIG_FETCH_ERROR"

    def test_http_source(self):
        def handler(request):
            assert request.url.path == "/rbac.json"
            return httpx.Response(200, content=config_bytes())

        client = httpx.Client(transport=httpx.MockTransport(handler))
        source = HTTPConfigSource("http://config.local/rbac.json", client=client)

        assert source.fetch_config() == config_bytes()
        assert source.format == "json"

    def test_http_source_yaml_from_url(self):
        source = HTTPConfigSource("http://config.local/rbac.yml", client=MagicMock())

        assert source.format == "yaml"

    def test_http_status_error(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        source = HTTPConfigSource("http://config.local/rbac.json", client=client)

        with pytest.raises(ConfigFetchError) as exc_info:
            source.fetch_config()

        assert "HTTP 503" in exc_info.value.message

    def test_http_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        source = HTTPConfigSource("http://config.local/rbac.json", client=client)

        with pytest.raises(ConfigFetchError):
            source.fetch_config()

    def test_http_source_leaves_injected_client_open(self):
        client = MagicMock()
        HTTPConfigSource("http://config.local/rbac.json", client=client).close()

        client.close.assert_not_called()

    def test_source_is_abstract(self):
        with pytest.raises(TypeError):
            ConfigSource()


class TestConfigReloader:
    """Test cases for ConfigReloader."""

    @pytest.fixture
    def source(self):
        return StaticConfigSource(config_bytes())

    @pytest.fixture
    def engine(self):
        return DecisionEngine()

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def reloader(self, engine, source, registry):
        reloader = ConfigReloader(engine, source, interval_seconds=60, metrics=MetricsCollector(registry=registry))
        yield reloader
        reloader.stop()

    def test_reload_applies_snapshot(self, reloader, engine):
        assert reloader.reload_once()

        assert engine.snapshot.digest == config_digest(config_bytes())
        assert engine.decide(viewer_request()).allowed

    def test_unchanged_bytes_skip_swap(self, reloader, engine, registry):
        reloader.reload_once()
        first = engine.snapshot

        assert not reloader.reload_once()
        assert engine.snapshot is first
        assert registry.get_sample_value("rbac_config_reloads_total", {"status": "unchanged"}) == 1.0

    def test_changed_bytes_swap(self, reloader, engine, source):
        reloader.reload_once()
        source.update(config_bytes("users:admin"))

        assert reloader.reload_once()
        assert not engine.decide(viewer_request()).allowed

    def test_parse_failure_keeps_last_good(self, reloader, engine, source, registry):
        reloader.reload_once()
        good = engine.snapshot
        source.update(b"{broken")

        assert not reloader.reload_once()
        assert engine.snapshot is good
        assert reloader.last_error is not None
        assert registry.get_sample_value("rbac_config_reloads_total", {"status": "failed"}) == 1.0

    def test_invalid_pattern_keeps_last_good(self, reloader, engine, source):
        reloader.reload_once()
        good = engine.snapshot
        source.update(json.dumps({
            "endpoints": [{"path": "/users/{id", "requiredPermissions": ["users:read"]}],
        }))

        assert not reloader.reload_once()
        assert engine.snapshot is good

    def test_fetch_failure_keeps_last_good(self, engine):
        source = MagicMock(spec=ConfigSource)
        source.name = "mock"
        source.fetch_config.side_effect = ConfigFetchError("mock", "unreachable")
        reloader = ConfigReloader(engine, source)

        assert not reloader.reload_once()
        assert engine.snapshot is None
        assert isinstance(reloader.last_error, ConfigFetchError)

    def test_success_clears_last_error(self, reloader, source):
        source.update(b"{broken")
        reloader.reload_once()
        source.update(config_bytes())

        assert reloader.reload_once()
        assert reloader.last_error is None

    @pytest.mark.parametrize("interval", [0, -1, None])
    def test_non_positive_interval_uses_default(self, engine, source, interval):
        reloader = ConfigReloader(engine, source, interval_seconds=interval)

        assert reloader.interval == DEFAULT_RELOAD_INTERVAL_SECONDS

    def test_background_loop_reloads(self, engine, source):
        reloader = ConfigReloader(engine, source, interval_seconds=0.05)
        reloader.start()
        try:
            deadline = time.monotonic() + 2.0
            while engine.snapshot is None and time.monotonic() < deadline:
                time.sleep(0.01)

            assert engine.snapshot is not None
            assert reloader.running
        finally:
            reloader.stop(timeout=1.0)

        assert not reloader.running

    def test_start_is_idempotent(self, reloader):
        reloader.start()
        thread = reloader._thread
        reloader.start()

        assert reloader._thread is thread

    def test_stop_without_start(self, engine, source):
        reloader = ConfigReloader(engine, source)
        reloader.stop()
        reloader.stop()

        assert not reloader.running

    def test_stop_closes_source_after_loop_exits(self, engine):
        source = BlockingSource(config_bytes())
        source.release.set()
        reloader = ConfigReloader(engine, source, interval_seconds=0.01)
        reloader.start()
        assert source.entered.wait(2.0)

        reloader.stop(timeout=2.0)

        assert not reloader.running
        assert source.closed == 1

    def test_stop_defers_close_while_fetch_in_flight(self, engine):
        source = BlockingSource(config_bytes())
        reloader = ConfigReloader(engine, source, interval_seconds=0.01)
        reloader.start()
        assert source.entered.wait(2.0)
        thread = reloader._thread

        reloader.stop(timeout=0.05)

        assert thread.is_alive()
        assert source.closed == 0

        source.release.set()
        thread.join(2.0)

        assert not thread.is_alive()
        assert source.closed == 1
