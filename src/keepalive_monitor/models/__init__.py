"""Pure frozen dataclasses with zero I/O.

The bottom of the diamond DAG: depended upon by ``core``, ``utils`` and
``services``, depends only on the standard library.

Attributes:
    TargetID: Stable ``namespace/name`` identity of a monitored resource.
    Backend: Dialable ``host:port`` plus a labeling identity.
    BackendResolution: Resolved backends plus per-backend failures.
    TargetInfo: Discovery record consumed by the qualification policy.
    ProbeResult: Outcome of one idle-timeout measurement.
"""

from .constants import ServiceName
from .target import (
    Backend,
    BackendResolution,
    ProbeResult,
    TargetID,
    TargetInfo,
    join_address,
    split_address,
)


__all__ = [
    "Backend",
    "BackendResolution",
    "ProbeResult",
    "ServiceName",
    "TargetID",
    "TargetInfo",
    "join_address",
    "split_address",
]
