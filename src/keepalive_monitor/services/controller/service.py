"""Controller service: reconcile discovered targets with running monitor loops.

Every cycle the controller re-reads the discovery snapshot, evaluates the
[qualification policy][keepalive_monitor.services.supervisor.qualification.qualifies]
for each target and drives the
[TargetSupervisor][keepalive_monitor.services.supervisor.TargetSupervisor]:

* a qualifying target gets a monitor loop (no-op if it already has one);
* a non-qualifying target (deleted, opted out, filtered by class) is
  disqualified;
* a monitored target missing from the snapshot is disqualified.

The monitor loops themselves are independent of the controller cycle: they
keep probing on their own schedule and resolve their backends against the
latest snapshot through the shared
[SnapshotResolver][keepalive_monitor.services.controller.discovery.SnapshotResolver].

[run_once()][keepalive_monitor.services.controller.Controller.run_once] is the
loop-free variant: one tick per qualifying target, then return.

See Also:
    [ControllerConfig][keepalive_monitor.services.controller.configs.ControllerConfig]:
        Configuration model for this service.
    [BaseService][keepalive_monitor.core.base_service.BaseService]: Lifecycle,
        ``run_forever()`` and service metrics.

Examples:
    ```python
    from keepalive_monitor.services.controller import Controller

    controller = Controller.from_yaml("config/controller.yaml")
    async with controller:
        await controller.run_forever()
    ```
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, ClassVar, Self

from keepalive_monitor.core.base_service import BaseService
from keepalive_monitor.core.metrics import KeepaliveMetrics
from keepalive_monitor.models.constants import ServiceName
from keepalive_monitor.services.supervisor import (
    MonitorHandle,
    TargetSupervisor,
    disqualification_reason,
    run_tick,
)
from keepalive_monitor.utils.probe import measure_timeout

from .configs import ControllerConfig
from .discovery import SnapshotResolver, load_snapshot


if TYPE_CHECKING:
    from types import TracebackType

    from keepalive_monitor.models.target import TargetID
    from keepalive_monitor.services.supervisor import ProbeFunc


class Controller(BaseService[ControllerConfig]):
    """Discovery-driven reconcile loop on top of the target supervisor.

    Attributes:
        SERVICE_NAME: ``"controller"``.
        CONFIG_CLASS: [ControllerConfig][keepalive_monitor.services.controller.ControllerConfig].
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.CONTROLLER
    CONFIG_CLASS: ClassVar[type[ControllerConfig]] = ControllerConfig

    def __init__(
        self,
        config: ControllerConfig | None = None,
        *,
        metrics: KeepaliveMetrics | None = None,
        probe: ProbeFunc | None = None,
    ) -> None:
        super().__init__(config=config)
        self._metrics = metrics if metrics is not None else KeepaliveMetrics()
        probe_config = self._config.probe
        if probe is None:
            probe = functools.partial(
                measure_timeout,
                connect_timeout=min(probe_config.connect_timeout, probe_config.timeout),
            )
        self._probe = probe
        self._resolver = SnapshotResolver()
        self._supervisor = TargetSupervisor(self._metrics, probe=probe, jitter=probe_config.jitter)
        self._executor: ThreadPoolExecutor | None = None

    @property
    def metrics(self) -> KeepaliveMetrics:
        return self._metrics

    @property
    def supervisor(self) -> TargetSupervisor:
        return self._supervisor

    @property
    def resolver(self) -> SnapshotResolver:
        return self._resolver

    async def run(self) -> None:
        """Reconcile once against the current discovery snapshot.

        Raises:
            ConfigurationError: If the snapshot cannot be loaded. Running
                loops are left untouched in that case.
        """
        path = self._config.discovery.path
        snapshot = await asyncio.to_thread(load_snapshot, path)
        self._resolver.update(snapshot)

        timeout = self._config.probe.timeout
        policy = self._config.selection
        targets = snapshot.target_map()
        started = stopped = 0

        for target_id, target in targets.items():
            reason = disqualification_reason(target.info(), policy)
            if reason is None:
                if self._supervisor.on_target_qualifies(target_id, timeout, self._resolver):
                    started += 1
            elif self._supervisor.on_target_disqualifies(target_id):
                stopped += 1
                self._logger.info("target_skipped", target=str(target_id), reason=reason)

        for target_id in self._supervisor.active_targets():
            if target_id not in targets:
                self._disqualify_vanished(target_id)
                stopped += 1

        monitored = len(self._supervisor)
        self.set_gauge("monitored_targets", monitored)
        self.set_gauge("discovered_targets", len(targets))
        self.inc_counter("monitors_started", started)
        self.inc_counter("monitors_stopped", stopped)
        self._logger.info(
            "reconcile_completed",
            discovered=len(targets),
            monitored=monitored,
            started=started,
            stopped=stopped,
        )

    async def run_once(self) -> int:
        """Probe every qualifying target exactly once, without monitor loops.

        Loads the snapshot, runs a single resolve-probe-publish tick per
        qualifying target concurrently and returns once all of them are done.
        Results land in [metrics][keepalive_monitor.services.controller.Controller.metrics].

        Returns:
            Number of backends probed across all targets.

        Raises:
            ConfigurationError: If the snapshot cannot be loaded.
        """
        snapshot = await asyncio.to_thread(load_snapshot, self._config.discovery.path)
        self._resolver.update(snapshot)

        policy = self._config.selection
        qualifying = [
            target_id
            for target_id, target in snapshot.target_map().items()
            if disqualification_reason(target.info(), policy) is None
        ]
        timeout = self._config.probe.timeout
        probed = await asyncio.gather(
            *(
                run_tick(
                    target_id,
                    timeout,
                    self._resolver,
                    MonitorHandle(target_id),
                    self._metrics,
                    self._probe,
                )
                for target_id in qualifying
            )
        )
        self._logger.info("probe_pass_completed", targets=len(qualifying), backends=sum(probed))
        return sum(probed)

    def _disqualify_vanished(self, target_id: TargetID) -> None:
        self._supervisor.on_target_disqualifies(target_id)
        self._logger.info("target_skipped", target=str(target_id), reason="vanished")

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        # Blocking probes run on the default executor via asyncio.to_thread.
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.probe.max_workers,
            thread_name_prefix="probe",
        )
        asyncio.get_running_loop().set_default_executor(self._executor)
        return await super().__aenter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        probe = self._config.probe
        await self._supervisor.shutdown(timeout=probe.timeout + probe.connect_timeout)
        # Probe threads still inside recv() finish on their own deadlines.
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        await super().__aexit__(exc_type, exc_val, exc_tb)

