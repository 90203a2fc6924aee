"""Prometheus metrics for backup cycles and the HTTP endpoint serving them."""

import logging
import threading
from typing import Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    disable_created_metrics,
    make_wsgi_app,
)

from .stats import BackupStats

logger = logging.getLogger(__name__)

# Buckets sized for counts of files and for byte volumes.
COUNT_BUCKETS = (0, 1, 10, 100, 1_000, 10_000, 100_000, 1_000_000, float("inf"))
BYTE_BUCKETS = tuple(float(1 << shift) for shift in range(10, 44, 3)) + (float("inf"),)
DURATION_BUCKETS = (1, 5, 15, 30, 60, 300, 900, 1800, 3600, 7200, 21600, float("inf"))


class BackupMetrics:
    """Counters and histograms owned by one backup manager."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        # Only the counter and histogram series are exported, no *_created gauges.
        disable_created_metrics()
        self.registry = registry if registry is not None else CollectorRegistry()

        self.backups_total = Counter(
            "backups_total", "Total number of backups", registry=self.registry
        )
        self.backups_successful = Counter(
            "backups_successful", "Number of successful backups", registry=self.registry
        )
        self.backups_failed = Counter(
            "backups_failed", "Number of failed backups", registry=self.registry
        )

        self.backup_duration = self._histogram(
            "backup_duration", "Duration of backups in seconds", DURATION_BUCKETS
        )
        self.files_new = self._histogram("files_new", "Number of new files", COUNT_BUCKETS)
        self.files_changed = self._histogram(
            "files_changed", "Number of changed files", COUNT_BUCKETS
        )
        self.files_unmodified = self._histogram(
            "files_unmodified", "Number of unmodified files", COUNT_BUCKETS
        )
        self.files_processed = self._histogram(
            "files_processed", "Number of processed files", COUNT_BUCKETS
        )
        self.bytes_added = self._histogram(
            "bytes_added", "Bytes added to the repository", BYTE_BUCKETS
        )
        self.bytes_processed = self._histogram(
            "bytes_processed", "Bytes processed during the backup", BYTE_BUCKETS
        )

    def _histogram(self, name: str, documentation: str, buckets) -> Histogram:
        return Histogram(name, documentation, buckets=buckets, registry=self.registry)

    def record_success(self) -> None:
        self.backups_successful.inc()
        self.backups_total.inc()

    def record_failure(self) -> None:
        self.backups_failed.inc()
        self.backups_total.inc()

    def observe(self, stats: BackupStats) -> None:
        """Feed every statistics field into its histogram."""
        self.backup_duration.observe(stats.duration)
        self.files_new.observe(stats.files_new)
        self.files_changed.observe(stats.files_changed)
        self.files_unmodified.observe(stats.files_unmodified)
        self.files_processed.observe(stats.files_processed)
        self.bytes_added.observe(stats.bytes_added)
        self.bytes_processed.observe(stats.bytes_processed)


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug("metrics request: " + format % args)


class MetricsServer:
    """Serves a registry in the Prometheus text format on a single path."""

    def __init__(self, registry: CollectorRegistry, host: str, port: int, path: str = "/metrics"):
        self.registry = registry
        self.host = host
        self.port = port
        self.path = path
        self._metrics_app = make_wsgi_app(registry)
        self._server: Optional[WSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    def app(self, environ, start_response):
        """WSGI app answering only the configured path."""
        if environ.get("PATH_INFO", "") != self.path:
            start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"Not Found\n"]
        return self._metrics_app(environ, start_response)

    def start(self) -> None:
        """Start serving in a daemon thread."""
        self._server = make_server(self.host, self.port, self.app, handler_class=_QuietHandler)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="metrics-server", daemon=True
        )
        self._thread.start()
        logger.info(f"Serving metrics on {self.host or '*'}:{self.port}{self.path}")

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
