"""
Target and backend identity models.

Pure frozen dataclasses describing *what* is monitored: the stable
[TargetID][keepalive_monitor.models.target.TargetID] used as registry key and
metric label, the dialable [Backend][keepalive_monitor.models.target.Backend]
endpoints that belong to a target, and the
[TargetInfo][keepalive_monitor.models.target.TargetInfo] discovery record
that feeds the qualification policy.

All validation happens in ``__post_init__`` so invalid instances never
escape the constructor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import IPv6Address
from typing import TYPE_CHECKING

from .constants import CLASS_ANNOTATION, DEFAULT_NAMESPACE, OPT_OUT_ANNOTATION


if TYPE_CHECKING:
    from collections.abc import Mapping


_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True, order=True)
class TargetID:
    """Stable, unique identity of a monitored resource.

    Used as the supervisor registry key and, in its string form
    ``namespace/name``, as the ``target`` label of every metric series.

    Attributes:
        namespace: Namespace the target lives in.
        name: Name of the target within its namespace.

    Raises:
        ValueError: If either part is empty or contains ``/``.

    Examples:
        ```python
        tid = TargetID("shop", "frontend")
        str(tid)                       # 'shop/frontend'
        TargetID.parse("shop/frontend") == tid  # True
        ```
    """

    namespace: str
    name: str

    def __post_init__(self) -> None:
        for part, value in (("namespace", self.namespace), ("name", self.name)):
            if not isinstance(value, str) or not value:
                raise ValueError(f"TargetID {part} must be a non-empty string")
            if "/" in value:
                raise ValueError(f"TargetID {part} must not contain '/': {value!r}")

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> TargetID:
        """Parse ``namespace/name`` (or a bare ``name`` in the default namespace)."""
        namespace, sep, name = value.partition("/")
        if not sep:
            return cls(DEFAULT_NAMESPACE, namespace)
        return cls(namespace, name)


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts, accepting bracketed IPv6 hosts.

    Raises:
        ValueError: If the port is missing or not a valid TCP port.
    """
    host, sep, port_str = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"address must be host:port, got {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"IPv6 host must be bracketed: {address!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in address {address!r}")
    return host, port


def join_address(host: str, port: int) -> str:
    """Build a dialable ``host:port`` string, bracketing IPv6 literals."""
    try:
        IPv6Address(host)
    except ValueError:
        return f"{host}:{port}"
    return f"[{host}]:{port}"


@dataclass(frozen=True, slots=True)
class Backend:
    """One dialable endpoint belonging to a target.

    Attributes:
        address: ``host:port`` used to open the connection.
        identity: Human-readable identity (e.g. ``service:port``), used only
            as the ``backend`` metric label.
        tls: Whether the backend speaks TLS.
    """

    address: str
    identity: str
    tls: bool = False

    def __post_init__(self) -> None:
        split_address(self.address)
        if not isinstance(self.identity, str) or not self.identity:
            raise ValueError("Backend identity must be a non-empty string")

    @property
    def host(self) -> str:
        return split_address(self.address)[0]

    @property
    def port(self) -> int:
        return split_address(self.address)[1]


@dataclass(frozen=True, slots=True)
class BackendResolution:
    """Outcome of resolving one target's backend set.

    Resolution fails per backend without failing the whole call: the
    backends that resolved are in ``backends`` (in discovery order), the
    failures in ``errors``.
    """

    backends: tuple[Backend, ...] = ()
    errors: tuple[Exception, ...] = ()

    def unique(self) -> tuple[Backend, ...]:
        """Backends deduplicated on their ``(address, identity)`` pair, order kept.

        Two identities that collapse to the same address are both kept so
        each gets its own metric series.
        """
        seen: dict[tuple[str, str], Backend] = {}
        for backend in self.backends:
            seen.setdefault((backend.address, backend.identity), backend)
        return tuple(seen.values())


@dataclass(frozen=True, slots=True)
class TargetInfo:
    """Discovery record for one target, evaluated by the qualification policy.

    Attributes:
        target_id: Identity of the target.
        class_annotation: Class taken from the legacy class annotation.
        explicit_class: Class assigned explicitly on the resource; wins over
            ``class_annotation``.
        opt_out: The resource carries the opt-out annotation.
        deletion_requested: The resource is being deleted.
    """

    target_id: TargetID
    class_annotation: str | None = None
    explicit_class: str | None = None
    opt_out: bool = False
    deletion_requested: bool = False

    @property
    def effective_class(self) -> str | None:
        """The class the target belongs to, ``None`` when unclassified."""
        return self.explicit_class or self.class_annotation or None

    @classmethod
    def from_annotations(
        cls,
        target_id: TargetID,
        annotations: Mapping[str, str] | None = None,
        *,
        explicit_class: str | None = None,
        deletion_requested: bool = False,
    ) -> TargetInfo:
        """Build a record from raw resource annotations."""
        annotations = annotations or {}
        return cls(
            target_id=target_id,
            class_annotation=annotations.get(CLASS_ANNOTATION) or None,
            explicit_class=explicit_class or None,
            opt_out=str(annotations.get(OPT_OUT_ANNOTATION, "")).strip().lower() in _TRUTHY,
            deletion_requested=deletion_requested,
        )


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of one idle-timeout measurement.

    Attributes:
        elapsed: Seconds the connection stayed idle-open (0 when the server
            refused keep-alive up front).
        timed_out: The read deadline fired before EOF; ``elapsed`` is only a
            lower bound on the real idle timeout. Meaningless with an error.
        error: The terminal probe error, if any.
    """

    elapsed: float = 0.0
    timed_out: bool = False
    error: Exception | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.elapsed < 0:
            raise ValueError(f"elapsed must be non-negative, got {self.elapsed}")
        if self.error is not None and self.timed_out:
            raise ValueError("timed_out is meaningless when an error is present")

    @property
    def ok(self) -> bool:
        """True if the measurement completed without error."""
        return self.error is None
