"""
Abstract base class for long-running keepalive-monitor services.

``BaseService[ConfigT]`` provides the standard lifecycle for all services:
structured logging via [Logger][keepalive_monitor.core.logger.Logger],
graceful shutdown via ``asyncio.Event``, configurable interval-based cycling
with [run_forever()][keepalive_monitor.core.base_service.BaseService.run_forever],
consecutive failure limits, and automatic Prometheus metrics tracking.

See Also:
    [BaseServiceConfig][keepalive_monitor.core.base_service.BaseServiceConfig]:
        Base configuration model for all services.
    [MetricsServer][keepalive_monitor.core.metrics.MetricsServer]: Prometheus
        endpoint started alongside the service.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .yaml import load_yaml


if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from keepalive_monitor.models.constants import ServiceName


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Base configuration shared by all services that run in a loop.

    Subclass this to add service-specific fields. The fields defined here
    control the
    [run_forever()][keepalive_monitor.core.base_service.BaseService.run_forever]
    cycle interval, failure tolerance, and Prometheus metrics exposition.
    """

    interval: float = Field(
        default=30.0,
        ge=1.0,
        description="Seconds between run cycles",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop after this many consecutive errors (0 = unlimited)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


# Bound TypeVar ensuring all service configs inherit from BaseServiceConfig
ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Abstract base class for all keepalive-monitor services.

    Subclasses must set ``SERVICE_NAME``, set ``CONFIG_CLASS`` to their
    Pydantic config model, and implement
    [run()][keepalive_monitor.core.base_service.BaseService.run].

    Attributes:
        SERVICE_NAME: Unique service identifier used in logging and metrics.
        CONFIG_CLASS: Pydantic model class used by factory methods to parse
            configuration from YAML/dict sources.
        _config: Typed service configuration (defaults from ``CONFIG_CLASS``).
        _logger: [Logger][keepalive_monitor.core.logger.Logger] named after
            the service.
        _shutdown_event: ``asyncio.Event`` controlling the run loop. Clear
            means the service is running; set means shutdown was requested.

    Note:
        The lifecycle pattern is ``async with service:`` then
        [run_forever()][keepalive_monitor.core.base_service.BaseService.run_forever]
        (or a single
        [run()][keepalive_monitor.core.base_service.BaseService.run] call
        with ``--once``).
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, config: ConfigT | None = None) -> None:
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        """The typed service configuration (read-only)."""
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """Execute one cycle of the service's main logic.

        Called repeatedly by
        [run_forever()][keepalive_monitor.core.base_service.BaseService.run_forever].
        Implementations should perform a bounded unit of work and return.
        """
        ...

    def request_shutdown(self) -> None:
        """Request a graceful shutdown of the service.

        Safe to call from signal handlers because setting an
        ``asyncio.Event`` is atomic.
        """
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Whether the service is still active (shutdown not yet requested)."""
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Wait for either a shutdown signal or a timeout to elapse.

        Returns ``True`` if shutdown was requested during the wait, or
        ``False`` if the timeout expired normally.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def run_forever(self) -> None:
        """Run the service in a loop with interval-based cycling.

        Repeatedly calls
        [run()][keepalive_monitor.core.base_service.BaseService.run], sleeping
        for ``config.interval`` seconds between cycles. Exits when shutdown is
        requested or when ``config.max_consecutive_failures`` is reached
        (``0`` disables the limit).

        Prometheus metrics are tracked automatically: ``cycles_success``,
        ``cycles_failed``, ``errors_{ExceptionType}`` (via
        ``SERVICE_COUNTER``), ``consecutive_failures``,
        ``last_cycle_timestamp`` (via ``SERVICE_GAUGE``) and
        ``cycle_duration_seconds``.

        ``CancelledError``, ``KeyboardInterrupt`` and ``SystemExit`` always
        propagate immediately without being counted as failures.
        """
        interval = getattr(self._config, "interval", 30.0)
        max_consecutive_failures = getattr(self._config, "max_consecutive_failures", 5)
        metrics_enabled = self._config.metrics.enabled

        if metrics_enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})

        self._logger.info(
            "run_forever_started",
            interval=interval,
            max_consecutive_failures=max_consecutive_failures,
        )

        consecutive_failures = 0

        while self.is_running:
            cycle_start = time.monotonic()

            try:
                await self.run()

                duration = time.monotonic() - cycle_start
                self.inc_counter("cycles_success")
                if metrics_enabled:
                    CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(duration)
                self.set_gauge("last_cycle_timestamp", time.time())
                self.set_gauge("consecutive_failures", 0)

                consecutive_failures = 0
                self._logger.debug("cycle_completed", next_cycle_s=interval)

            except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                raise

            except Exception as e:  # Top-level error boundary for run_forever
                consecutive_failures += 1

                self.inc_counter("cycles_failed")
                self.set_gauge("consecutive_failures", consecutive_failures)
                self.inc_counter(f"errors_{type(e).__name__}")

                self._logger.error(
                    "run_cycle_error",
                    error=str(e),
                    consecutive_failures=consecutive_failures,
                )

                if (
                    max_consecutive_failures > 0
                    and consecutive_failures >= max_consecutive_failures
                ):
                    self._logger.critical(
                        "max_consecutive_failures_reached",
                        failures=consecutive_failures,
                        limit=max_consecutive_failures,
                    )
                    break

            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str | Path, **kwargs: Any) -> Self:
        """Create a service instance from a YAML configuration file.

        Args:
            config_path: Path to the YAML file.
            **kwargs: Additional keyword arguments passed to the constructor.
        """
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> Self:
        """Create a service instance from a configuration dictionary."""
        config = cast("ConfigT", cls.CONFIG_CLASS(**data))
        return cls(config=config, **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        """Mark the service as running on context entry."""
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        """Signal shutdown on context exit."""
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set a named gauge metric for this service.

        No-op if metrics are disabled in
        [MetricsConfig][keepalive_monitor.core.metrics.MetricsConfig].
        """
        if not self._config.metrics.enabled:
            return
        SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment a named counter metric for this service.

        No-op if metrics are disabled in
        [MetricsConfig][keepalive_monitor.core.metrics.MetricsConfig].
        """
        if not self._config.metrics.enabled:
            return
        SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
