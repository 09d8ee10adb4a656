"""
Periodic configuration reload.
"""

import hashlib
import threading
from typing import Optional

from shared.config import DEFAULT_RELOAD_INTERVAL_SECONDS
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..engine import DecisionEngine, build_snapshot
from ..loader import parse_config
from .sources import ConfigSource


RELOAD_APPLIED = "applied"
RELOAD_UNCHANGED = "unchanged"
RELOAD_FAILED = "failed"


def config_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ConfigReloader:
    """Fetches, rebuilds and swaps the engine's snapshot on a fixed cadence.

    Failures leave the last good snapshot in place. A fetch that hangs
    delays only the next reload; decisions keep using the active snapshot.
    """

    def __init__(
        self,
        engine: DecisionEngine,
        source: ConfigSource,
        interval_seconds: float = DEFAULT_RELOAD_INTERVAL_SECONDS,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.engine = engine
        self.source = source
        self.interval = interval_seconds if interval_seconds and interval_seconds > 0 else DEFAULT_RELOAD_INTERVAL_SECONDS
        self.metrics = metrics
        self.logger = get_logger("rbac.reload")
        self.last_error: Optional[Exception] = None
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._loop_done = False
        self._close_on_exit = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stopped.clear()
            self._loop_done = False
            self._close_on_exit = False
            self._thread = threading.Thread(
                target=self._run,
                name="rbac-config-reloader",
                daemon=True,
            )
            self._thread.start()
        self.logger.info("Config reloader started", source=self.source.name, interval=self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit. An in-flight fetch is allowed to finish.

        The source is closed once nothing can fetch from it any more: here
        when the loop has exited, otherwise by the loop itself on its way out.
        """
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)

        with self._lock:
            if thread is not None and not self._loop_done:
                self._close_on_exit = True
                self.logger.warning(
                    "Config reloader still fetching, deferring source close",
                    source=self.source.name,
                )
                return
        self.source.close()

    def reload_once(self) -> bool:
        """Run one fetch/parse/swap cycle. Returns True if a new snapshot was applied."""
        try:
            data = self.source.fetch_config()
            digest = config_digest(data)

            current = self.engine.snapshot
            if current is not None and current.digest == digest:
                self.logger.debug("RBAC configuration unchanged", source=self.source.name)
                self._record(RELOAD_UNCHANGED)
                return False

            config = parse_config(data, self.source.format)
            self.engine.swap(build_snapshot(config, digest))
        except Exception as e:
            self.last_error = e
            self.logger.error(
                "Failed to reload RBAC configuration",
                source=self.source.name,
                error=str(e),
            )
            self._record(RELOAD_FAILED)
            return False

        self.last_error = None
        self.logger.info("RBAC configuration reloaded", source=self.source.name, digest=digest)
        self._record(RELOAD_APPLIED)
        return True

    def _run(self) -> None:
        try:
            while not self._stopped.wait(self.interval):
                self.reload_once()
        finally:
            with self._lock:
                self._loop_done = True
                close = self._close_on_exit
            if close:
                self.source.close()
                self.logger.info("Config reloader stopped", source=self.source.name)

    def _record(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_reload(status)
