r"""keepalive-monitor -- HTTP keep-alive idle timeout monitoring.

Continuously measures how long backends keep idle HTTP/1.1 connections open
and exposes the latest measurement per backend as a Prometheus gauge, with
failures counted separately.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Controller, TargetSupervisor, monitor loops
             /        \
          core        utils    Logging, metrics, base service | probe engine, parsing
             \        /
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    For lightweight usage, import directly from subpackages::

        from keepalive_monitor.models import TargetID
        from keepalive_monitor.utils.probe import measure_timeout

    Top-level imports (``from keepalive_monitor import Controller``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("keepalive-monitor")

__all__ = [
    "Backend",
    "BaseService",
    "Controller",
    "ControllerConfig",
    "KeepaliveMetrics",
    "Logger",
    "ProbeResult",
    "SelectionPolicy",
    "TargetID",
    "TargetSupervisor",
    "measure_timeout",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("keepalive_monitor.core", "BaseService"),
    "KeepaliveMetrics": ("keepalive_monitor.core", "KeepaliveMetrics"),
    "Logger": ("keepalive_monitor.core", "Logger"),
    "Backend": ("keepalive_monitor.models", "Backend"),
    "ProbeResult": ("keepalive_monitor.models", "ProbeResult"),
    "TargetID": ("keepalive_monitor.models", "TargetID"),
    "measure_timeout": ("keepalive_monitor.utils.probe", "measure_timeout"),
    "Controller": ("keepalive_monitor.services", "Controller"),
    "ControllerConfig": ("keepalive_monitor.services", "ControllerConfig"),
    "SelectionPolicy": ("keepalive_monitor.services", "SelectionPolicy"),
    "TargetSupervisor": ("keepalive_monitor.services", "TargetSupervisor"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'keepalive_monitor' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
