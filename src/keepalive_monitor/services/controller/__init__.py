"""Controller service package.

Re-exports all public symbols::

    from keepalive_monitor.services.controller import Controller, ControllerConfig
"""

from .configs import ControllerConfig, DiscoveryConfig, ProbeConfig
from .discovery import (
    BackendRef,
    DiscoverySnapshot,
    ServicePort,
    ServiceSpec,
    SnapshotResolver,
    TargetSpec,
    load_snapshot,
    resolve_backend,
)
from .service import Controller


__all__ = [
    "BackendRef",
    "Controller",
    "ControllerConfig",
    "DiscoveryConfig",
    "DiscoverySnapshot",
    "ProbeConfig",
    "ServicePort",
    "ServiceSpec",
    "SnapshotResolver",
    "TargetSpec",
    "load_snapshot",
    "resolve_backend",
]
