"""Target supervisor package.

Re-exports all public symbols::

    from keepalive_monitor.services.supervisor import TargetSupervisor, SelectionPolicy
"""

from .loop import BackendResolver, ProbeFunc, jittered_period, run_monitor_loop, run_tick
from .qualification import SelectionPolicy, disqualification_reason, qualifies
from .registry import MonitorHandle, MonitorRegistry
from .supervisor import TargetSupervisor


__all__ = [
    "BackendResolver",
    "MonitorHandle",
    "MonitorRegistry",
    "ProbeFunc",
    "SelectionPolicy",
    "TargetSupervisor",
    "disqualification_reason",
    "jittered_period",
    "qualifies",
    "run_monitor_loop",
    "run_tick",
]
