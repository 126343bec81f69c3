"""Shared constants for the models layer.

Defines enumerations and fixed values used across multiple layers. Placing
them here keeps ``utils``, ``core`` and ``services`` free of circular
imports.

See Also:
    [keepalive_monitor.utils.probe][]: Sends [USER_AGENT][keepalive_monitor.models.constants.USER_AGENT]
        and uses the default timeouts defined here.
    [keepalive_monitor.models.target][]: Uses the annotation keys to
        derive class and opt-out information for a target.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics.

    Attributes:
        CONTROLLER: Discovery-driven reconcile service
            ([Controller][keepalive_monitor.services.controller.Controller]).
        SUPERVISOR: Registry of per-target monitor loops
            ([TargetSupervisor][keepalive_monitor.services.supervisor.TargetSupervisor]).
        MONITOR: Per-target probe loops
            ([run_monitor_loop][keepalive_monitor.services.supervisor.loop.run_monitor_loop]).
        CHECK: Standalone single-shot probe entry point.
    """

    CONTROLLER = "controller"
    SUPERVISOR = "supervisor"
    MONITOR = "monitor"
    CHECK = "check"


USER_AGENT: Final[str] = "http-keepalive-monitor/1.0"

DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0

# Default idle timeout budget for the controller; one second above the
# common 60s proxy default so that a 60s server timeout is still observed.
DEFAULT_PROBE_TIMEOUT: Final[float] = 61.0

# Budget for the single-shot checker.
DEFAULT_CHECK_TIMEOUT: Final[float] = 300.0

# Gauge value published when a probe fails.
ERROR_SENTINEL: Final[float] = -1.0

DEFAULT_NAMESPACE: Final[str] = "default"

CLASS_ANNOTATION: Final[str] = "kubernetes.io/ingress.class"
OPT_OUT_ANNOTATION: Final[str] = "keepalive-monitor/ignore"
