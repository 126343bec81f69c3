"""Target supervision and the discovery-driven controller.

Services are the top layer of the diamond DAG, depending on
[keepalive_monitor.core][keepalive_monitor.core],
[keepalive_monitor.utils][keepalive_monitor.utils] and
[keepalive_monitor.models][keepalive_monitor.models].

```text
discovery snapshot -> Controller -> TargetSupervisor -> monitor loops -> probe -> metrics
```

Attributes:
    Controller: [BaseService][keepalive_monitor.core.base_service.BaseService]
        that reconciles the discovery snapshot with the supervisor every
        ``interval`` seconds.
    TargetSupervisor: Lock-guarded registry of one cancelable monitor loop
        per qualifying target.
"""

from .controller import (
    Controller,
    ControllerConfig,
)
from .supervisor import (
    SelectionPolicy,
    TargetSupervisor,
)


__all__ = [
    "Controller",
    "ControllerConfig",
    "SelectionPolicy",
    "TargetSupervisor",
]
