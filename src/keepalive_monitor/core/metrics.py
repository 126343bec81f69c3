"""
Prometheus metrics collection and HTTP exposition.

Two families of metrics live here:

* **Keep-alive series**, owned by
  [KeepaliveMetrics][keepalive_monitor.core.metrics.KeepaliveMetrics]: one
  ``http_keepalive_idle_timeout_seconds`` gauge and one
  ``http_keepalive_errors_total`` counter per ``{target, backend}`` pair.
* **Service metrics** (module-level singletons, thread-safe): cycle counts,
  durations and failure streaks recorded by ``BaseService.run_forever()``.

The ``MetricsServer`` exposes everything over an aiohttp ``/metrics``
endpoint. Configuration is handled through ``MetricsConfig``.

Architecture:
    SERVICE_INFO:               Static metadata set once at startup.
    SERVICE_GAUGE:              Point-in-time values (current state).
    SERVICE_COUNTER:            Cumulative totals (monotonically increasing).
    CYCLE_DURATION_SECONDS:     Histogram for latency percentiles (p50/p95/p99).

Note:
    Series of a target are deleted with a two-phase protocol. A scrape runs
    inside ``KeepaliveMetrics.collecting()``; a deletion requested while any
    collection is in progress is queued and applied when the last collection
    finishes, so deletion never runs inside a collection pass.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from typing import TYPE_CHECKING

import prometheus_client
from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
)
from pydantic import BaseModel, Field

from keepalive_monitor.models.constants import ERROR_SENTINEL


if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True.
    """

    enabled: bool = Field(default=True, description="Expose the /metrics endpoint")
    port: int = Field(default=8080, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="0.0.0.0", description="Metrics HTTP bind address")  # noqa: S104
    path: str = Field(default="/metrics", description="Metrics endpoint path")

    @classmethod
    def from_address(cls, address: str, **kwargs: object) -> MetricsConfig:
        """Build a config from a ``host:port`` bind address.

        An empty host (``":8080"``) binds all interfaces.

        Raises:
            ValueError: If the address has no port.
        """
        host, sep, port = address.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"metrics address must be [host]:port, got {address!r}")
        return cls(host=host.strip("[]") or "0.0.0.0", port=int(port), **kwargs)  # noqa: S104


# ---------------------------------------------------------------------------
# Service Metrics (auto-tracked by BaseService.run_forever)
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "service",
    "Service information and metadata",
)

CYCLE_DURATION_SECONDS = Histogram(
    "cycle_duration_seconds",
    "Duration of service cycle in seconds",
    ["service"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60),
)

SERVICE_GAUGE = Gauge(
    "service_gauge",
    "Service gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "service_counter",
    "Service counter values (cumulative totals)",
    ["service", "name"],
)


# ---------------------------------------------------------------------------
# Keep-alive Series
# ---------------------------------------------------------------------------


class KeepaliveMetrics:
    """Thread-safe sink for the per-backend keep-alive series.

    Keeps an index of the ``(target, backend)`` pairs it has written so that
    every series of a target can be deleted by target label alone.

    Attributes:
        idle_timeout: Gauge ``<namespace>_idle_timeout_seconds{target, backend}``.
        errors: Counter ``<namespace>_errors_total{target, backend}``.

    Examples:
        ```python
        metrics = KeepaliveMetrics()
        metrics.set_idle_timeout("shop/web", "web:80", 60.2)
        metrics.record_error("shop/web", "api:http")
        metrics.delete_target("shop/web")
        ```
    """

    LABELS = ("target", "backend")

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        *,
        namespace: str = "http_keepalive",
    ) -> None:
        self._registry = registry if registry is not None else REGISTRY
        self.idle_timeout = Gauge(
            "idle_timeout_seconds",
            "The idle timeout measured for http keepalive connections",
            self.LABELS,
            namespace=namespace,
            registry=self._registry,
        )
        self.errors = Counter(
            "errors",
            "Errors that happened while measuring the idle timeout",
            self.LABELS,
            namespace=namespace,
            registry=self._registry,
        )
        self._gauge_name = f"{namespace}_idle_timeout_seconds"
        self._lock = threading.Lock()
        self._series: dict[str, set[str]] = {}
        self._collecting = 0
        self._pending: set[tuple[str, str]] = set()

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def _touch(self, target: str, backend: str) -> None:
        """Register a pair in the index; caller holds ``_lock``."""
        self._series.setdefault(target, set()).add(backend)
        # A fresh write supersedes a deletion still waiting for a scrape.
        self._pending.discard((target, backend))
        self.errors.labels(target, backend)

    def set_idle_timeout(self, target: str, backend: str, seconds: float) -> None:
        """Publish a successful measurement."""
        with self._lock:
            self._touch(target, backend)
            self.idle_timeout.labels(target, backend).set(seconds)

    def record_error(self, target: str, backend: str) -> None:
        """Publish a failed measurement: counter +1 and the gauge sentinel."""
        with self._lock:
            self._touch(target, backend)
            self.errors.labels(target, backend).inc()
            self.idle_timeout.labels(target, backend).set(ERROR_SENTINEL)

    def delete_target(self, target: str) -> int:
        """Delete every series whose ``target`` label matches.

        Applied immediately when no collection is running, otherwise queued
        until the last running collection completes.

        Returns:
            Number of ``(target, backend)`` pairs removed or queued.
        """
        with self._lock:
            pairs = {(target, backend) for backend in self._series.pop(target, ())}
            self._delete(pairs)
        return len(pairs)

    def delete_series(self, target: str, backends: Iterable[str]) -> int:
        """Delete the series of ``target`` for the given backends only.

        Backends that were never written are ignored. Deferred during a
        collection exactly like ``delete_target()``.

        Returns:
            Number of ``(target, backend)`` pairs removed or queued.
        """
        with self._lock:
            known = self._series.get(target)
            if not known:
                return 0
            stale = known.intersection(backends)
            known.difference_update(stale)
            if not known:
                del self._series[target]
            pairs = {(target, backend) for backend in stale}
            self._delete(pairs)
        return len(pairs)

    def _delete(self, pairs: set[tuple[str, str]]) -> None:
        """Remove now or queue for after the scrape; caller holds ``_lock``."""
        if self._collecting:
            self._pending |= pairs
        else:
            self._remove(pairs)

    def _remove(self, pairs: Iterable[tuple[str, str]]) -> None:
        for labels in pairs:
            for metric in (self.idle_timeout, self.errors):
                # Older prometheus_client releases raise on unknown children.
                with contextlib.suppress(KeyError):
                    metric.remove(*labels)

    @contextlib.contextmanager
    def collecting(self) -> Iterator[None]:
        """Mark a collection pass; deletions requested meanwhile are deferred."""
        with self._lock:
            self._collecting += 1
        try:
            yield
        finally:
            with self._lock:
                self._collecting -= 1
                if not self._collecting and self._pending:
                    pending, self._pending = self._pending, set()
                    self._remove(pending)

    def generate_latest(self) -> bytes:
        """Render the registry in exposition format inside a collection pass."""
        with self.collecting():
            return prometheus_client.generate_latest(self._registry)

    def series(self) -> dict[str, frozenset[str]]:
        """Snapshot of the indexed series: target -> backends."""
        with self._lock:
            return {target: frozenset(backends) for target, backends in self._series.items()}

    def idle_timeout_value(self, target: str, backend: str) -> float | None:
        """Current gauge value of one series, ``None`` if it is not exported."""
        with self.collecting():
            return self._registry.get_sample_value(
                self._gauge_name, {"target": target, "backend": backend}
            )

    @property
    def pending_deletions(self) -> int:
        with self._lock:
            return len(self._pending)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible /metrics endpoint.

    When a [KeepaliveMetrics][keepalive_monitor.core.metrics.KeepaliveMetrics]
    sink is given, scrapes render its registry inside a collection pass in a
    worker thread; otherwise the default registry is rendered directly.

    Example:
        server = MetricsServer(MetricsConfig(port=8081), metrics)
        await server.start()
        # ... service runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig, metrics: KeepaliveMetrics | None = None) -> None:
        self._config = config
        self._metrics = metrics
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for Prometheus scrape requests.

        No-op if metrics are disabled in the configuration.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        if self._metrics is not None:
            output = await asyncio.to_thread(self._metrics.generate_latest)
        else:
            output = prometheus_client.generate_latest()
        return web.Response(body=output, headers={"Content-Type": CONTENT_TYPE_LATEST})


async def start_metrics_server(
    config: MetricsConfig | None = None,
    metrics: KeepaliveMetrics | None = None,
) -> MetricsServer:
    """Create and start a metrics server.

    Returns:
        A running MetricsServer instance. Caller should call ``stop()``
        during shutdown to release the bound port.
    """
    server = MetricsServer(config or MetricsConfig(), metrics)
    await server.start()
    return server
