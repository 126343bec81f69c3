"""Controller service configuration models.

Duration fields accept plain seconds or duration strings (``"61s"``,
``"5m"``, ``"1h30m"``), see
[parse_duration()][keepalive_monitor.utils.parsing.parse_duration].

See Also:
    [Controller][keepalive_monitor.services.controller.Controller]: The
        service class that consumes these configurations.
    [BaseServiceConfig][keepalive_monitor.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, failure limit and metrics fields.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field

from keepalive_monitor.core.base_service import BaseServiceConfig
from keepalive_monitor.models.constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_PROBE_TIMEOUT
from keepalive_monitor.services.supervisor.qualification import SelectionPolicy
from keepalive_monitor.utils.parsing import parse_duration


Duration = Annotated[float, BeforeValidator(parse_duration)]


class ProbeConfig(BaseModel):
    """Probe settings shared by every monitor loop.

    Attributes:
        timeout: Idle read deadline, also the base period of each loop's
            jittered schedule.
        connect_timeout: Upper bound for TCP connect and TLS handshake.
        max_workers: Size of the thread pool running blocking probes.
        jitter: Jitter factor of the loop schedule (``0`` means ``1``).
    """

    timeout: Duration = Field(default=DEFAULT_PROBE_TIMEOUT, gt=0.0)
    connect_timeout: Duration = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0.0)
    max_workers: int = Field(default=64, ge=1, le=4096)
    jitter: float = Field(default=0.0, ge=0.0, le=10.0)


class DiscoveryConfig(BaseModel):
    """Location of the discovery snapshot re-read every cycle."""

    path: Path = Field(default=Path("discovery.yaml"))


class ControllerConfig(BaseServiceConfig):
    """Configuration for the [Controller][keepalive_monitor.services.controller.Controller].

    Examples:
        ```yaml
        interval: 30s
        probe:
          timeout: 61s
        selection:
          default_class: false
          ingress_class: nginx
        discovery:
          path: /etc/keepalive-monitor/discovery.yaml
        metrics:
          port: 8080
        ```
    """

    interval: Duration = Field(default=30.0, ge=1.0, description="Seconds between reconciles")
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    selection: SelectionPolicy = Field(default_factory=SelectionPolicy)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)

