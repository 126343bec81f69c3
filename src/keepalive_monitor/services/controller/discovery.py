"""
File-based target discovery.

A discovery snapshot is a YAML document listing ingress-like **targets** and
service-like **services**. Targets reference services by name and by port
number or port name; the
[SnapshotResolver][keepalive_monitor.services.controller.discovery.SnapshotResolver]
turns those references into dialable
[Backend][keepalive_monitor.models.target.Backend] addresses.

Resolution rules:

* a backend reference without a service is a per-backend error;
* an unknown service is a per-backend error;
* a headless service (``cluster_ip: "None"``) is dialed via
  ``<name>.<namespace>.svc.cluster.local``;
* a numeric port is used as-is, a named port is looked up on the service.

Examples:
    ```yaml
    targets:
      - namespace: shop
        name: web
        ingress_class: nginx
        default_backend: {service: web, port: 80}
        rules:
          - paths:
              - path: /api
                backend: {service: api, port: http}
    services:
      - {namespace: shop, name: web, cluster_ip: 10.0.0.10, ports: [{port: 80}]}
      - {namespace: shop, name: api, cluster_ip: "None", ports: [{name: http, port: 8080}]}
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError, field_validator

from keepalive_monitor.core.exceptions import (
    BackendResolveError,
    ConfigurationError,
    TargetResolveError,
)
from keepalive_monitor.core.yaml import load_yaml
from keepalive_monitor.models.constants import DEFAULT_NAMESPACE
from keepalive_monitor.models.target import (
    Backend,
    BackendResolution,
    TargetID,
    TargetInfo,
    join_address,
)


if TYPE_CHECKING:
    from pathlib import Path


HEADLESS_CLUSTER_IP = "None"


# ---------------------------------------------------------------------------
# Snapshot Models
# ---------------------------------------------------------------------------


class BackendRef(BaseModel):
    """Reference from a target to one port of a service."""

    service: str | None = Field(default=None, description="Referenced service name")
    port: int | str | None = Field(default=None, description="Port number or port name")

    @property
    def identity(self) -> str:
        """``service:port`` label of the reference."""
        return f"{self.service or '<none>'}:{self.port if self.port is not None else ''}"


class PathRule(BaseModel):
    path: str = Field(default="/")
    backend: BackendRef


class Rule(BaseModel):
    host: str | None = Field(default=None)
    paths: list[PathRule] = Field(default_factory=list)


class TargetSpec(BaseModel):
    """One monitored resource as listed in the snapshot."""

    namespace: str = Field(default=DEFAULT_NAMESPACE, pattern=r"^[^/]+$")
    name: str = Field(pattern=r"^[^/]+$")
    ingress_class: str | None = Field(default=None, description="Explicit class assignment")
    annotations: dict[str, str] = Field(default_factory=dict)
    deleted: bool = Field(default=False, description="Deletion is in progress")
    default_backend: BackendRef | None = Field(default=None)
    rules: list[Rule] = Field(default_factory=list)

    @field_validator("annotations", mode="before")
    @classmethod
    def _stringify_annotations(cls, value: object) -> object:
        # YAML turns `true` into a bool; annotations are strings.
        if isinstance(value, dict):
            return {
                str(k): str(v).lower() if isinstance(v, bool) else str(v) for k, v in value.items()
            }
        return value

    @property
    def target_id(self) -> TargetID:
        return TargetID(self.namespace, self.name)

    def info(self) -> TargetInfo:
        return TargetInfo.from_annotations(
            self.target_id,
            self.annotations,
            explicit_class=self.ingress_class,
            deletion_requested=self.deleted,
        )

    def backend_refs(self) -> list[BackendRef]:
        """Default backend first, then every rule path in order."""
        refs = [self.default_backend] if self.default_backend is not None else []
        refs.extend(path.backend for rule in self.rules for path in rule.paths)
        return refs


class ServicePort(BaseModel):
    name: str = Field(default="")
    port: int = Field(ge=1, le=65535)
    tls: bool = Field(default=False, description="The port speaks TLS")


class ServiceSpec(BaseModel):
    """A service whose ports targets can reference."""

    namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    name: str = Field(min_length=1)
    cluster_ip: str = Field(default=HEADLESS_CLUSTER_IP)
    ports: list[ServicePort] = Field(default_factory=list)

    @property
    def host(self) -> str:
        if not self.cluster_ip or self.cluster_ip == HEADLESS_CLUSTER_IP:
            return f"{self.name}.{self.namespace}.svc.cluster.local"
        return self.cluster_ip

    def find_port(self, port: int | str) -> ServicePort | None:
        for candidate in self.ports:
            if (isinstance(port, int) and candidate.port == port) or candidate.name == port:
                return candidate
        return None


class DiscoverySnapshot(BaseModel):
    """Point-in-time view of all targets and services."""

    targets: list[TargetSpec] = Field(default_factory=list)
    services: list[ServiceSpec] = Field(default_factory=list)

    def target_map(self) -> dict[TargetID, TargetSpec]:
        """Targets by identity; a later duplicate replaces an earlier one."""
        return {target.target_id: target for target in self.targets}

    def service_map(self) -> dict[tuple[str, str], ServiceSpec]:
        return {(service.namespace, service.name): service for service in self.services}


def load_snapshot(path: str | Path) -> DiscoverySnapshot:
    """Load and validate a discovery snapshot file.

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid.
    """
    try:
        data = load_yaml(path)
    except FileNotFoundError as e:
        raise ConfigurationError(f"discovery snapshot not found: {path}") from e
    try:
        return DiscoverySnapshot.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid discovery snapshot {path}: {e}") from e


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_backend(
    namespace: str,
    ref: BackendRef,
    services: dict[tuple[str, str], ServiceSpec],
) -> Backend:
    """Resolve one backend reference of a target in ``namespace``.

    Raises:
        BackendResolveError: If the reference has no service, the service is
            unknown or a named port does not exist on it.
    """
    identity = ref.identity
    if not ref.service:
        raise BackendResolveError(
            "backend does not contain a service reference", backend=identity
        )
    service = services.get((namespace, ref.service))
    if service is None:
        raise BackendResolveError(
            f"service {namespace}/{ref.service} not found", backend=identity
        )

    if isinstance(ref.port, int) and ref.port > 0:
        port = service.find_port(ref.port)
        return Backend(
            address=join_address(service.host, ref.port),
            identity=identity,
            tls=port.tls if port is not None else False,
        )

    if not isinstance(ref.port, str) or not ref.port:
        raise BackendResolveError("backend does not specify a port", backend=identity)
    port = service.find_port(ref.port)
    if port is None:
        raise BackendResolveError(
            f"port {ref.port!r} not found on service {namespace}/{ref.service}",
            backend=identity,
        )
    return Backend(address=join_address(service.host, port.port), identity=identity, tls=port.tls)


class SnapshotResolver:
    """Resolves targets against the most recently loaded snapshot.

    Shared by every monitor loop; the controller swaps the snapshot each
    cycle with [update()][keepalive_monitor.services.controller.discovery.SnapshotResolver.update].
    """

    def __init__(self, snapshot: DiscoverySnapshot | None = None) -> None:
        self._targets: dict[TargetID, TargetSpec] = {}
        self._services: dict[tuple[str, str], ServiceSpec] = {}
        self.update(snapshot or DiscoverySnapshot())

    def update(self, snapshot: DiscoverySnapshot) -> None:
        # Rebinding both maps is atomic for readers on the event loop thread.
        self._targets = snapshot.target_map()
        self._services = snapshot.service_map()

    def resolve_now(self, target_id: TargetID) -> BackendResolution:
        target = self._targets.get(target_id)
        if target is None:
            raise TargetResolveError(f"target {target_id} not found")

        backends: list[Backend] = []
        errors: list[Exception] = []
        for ref in target.backend_refs():
            try:
                backends.append(resolve_backend(target.namespace, ref, self._services))
            except BackendResolveError as e:
                errors.append(e)
        return BackendResolution(backends=tuple(backends), errors=tuple(errors))

    async def resolve(self, target_id: TargetID) -> BackendResolution:
        """Resolve ``target_id`` to its backends.

        Raises:
            TargetResolveError: If the target is not in the snapshot.
        """
        return self.resolve_now(target_id)
