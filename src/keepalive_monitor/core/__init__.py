"""Core layer providing the foundation for all keepalive-monitor services.

Sits in the middle of the diamond DAG -- depends only on
``keepalive_monitor.models`` and is depended upon by
``keepalive_monitor.services``.

Attributes:
    BaseService: Abstract generic base class with lifecycle management
        ([run()][keepalive_monitor.core.base_service.BaseService.run] /
        [run_forever()][keepalive_monitor.core.base_service.BaseService.run_forever] /
        shutdown), factory methods and Prometheus metrics integration.
    KeepaliveMetrics: Gauge and counter sink for the per-backend series,
        with two-phase target deletion.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    YAML: Safe YAML loading with ``yaml.safe_load()``.
"""

from .base_service import (
    BaseService,
    BaseServiceConfig,
    ConfigT,
)
from .exceptions import (
    BackendResolveError,
    BodyDrainError,
    ConfigurationError,
    ConnectError,
    KeepaliveMonitorError,
    OtherReadError,
    ProbeError,
    ReadDeadlineSetError,
    RequestWriteError,
    ResolveError,
    ResponseParseError,
    TargetResolveError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    KeepaliveMetrics,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BackendResolveError",
    "BaseService",
    "BaseServiceConfig",
    "BodyDrainError",
    "ConfigT",
    "ConfigurationError",
    "ConnectError",
    "KeepaliveMetrics",
    "KeepaliveMonitorError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "OtherReadError",
    "ProbeError",
    "ReadDeadlineSetError",
    "RequestWriteError",
    "ResolveError",
    "ResponseParseError",
    "StructuredFormatter",
    "TargetResolveError",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
