"""
Target supervisor: one cancelable monitor loop per qualifying target.

The supervisor reacts to two discovery events. A target that qualifies gets
a monitor loop unless it already has one; a target that disqualifies has its
loop cancelled and deregistered, and all of its metric series deleted.

Note:
    Operations are synchronous and must be called from the event loop
    thread. Registry state is guarded by the
    [MonitorRegistry][keepalive_monitor.services.supervisor.registry.MonitorRegistry]
    lock.

See Also:
    [run_monitor_loop()][keepalive_monitor.services.supervisor.loop.run_monitor_loop]:
        The loop started per target.
    [KeepaliveMetrics.delete_target()][keepalive_monitor.core.metrics.KeepaliveMetrics.delete_target]:
        Two-phase series deletion used on disqualify.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from keepalive_monitor.core.logger import Logger
from keepalive_monitor.models.constants import ServiceName
from keepalive_monitor.utils.probe import measure_timeout

from .loop import run_monitor_loop
from .registry import MonitorHandle, MonitorRegistry


if TYPE_CHECKING:
    from keepalive_monitor.core.metrics import KeepaliveMetrics
    from keepalive_monitor.models.target import TargetID

    from .loop import BackendResolver, ProbeFunc


class TargetSupervisor:
    """Registry-backed owner of all per-target monitor loops.

    Examples:
        ```python
        supervisor = TargetSupervisor(KeepaliveMetrics())
        supervisor.on_target_qualifies(TargetID("shop", "web"), 61.0, resolver)
        supervisor.on_target_disqualifies(TargetID("shop", "web"))
        await supervisor.shutdown()
        ```
    """

    def __init__(
        self,
        metrics: KeepaliveMetrics,
        *,
        registry: MonitorRegistry | None = None,
        probe: ProbeFunc = measure_timeout,
        jitter: float = 0.0,
    ) -> None:
        self._metrics = metrics
        self._registry = registry if registry is not None else MonitorRegistry()
        self._probe = probe
        self._jitter = jitter
        # Every loop task not yet finished, including cancelled ones still draining.
        self._tasks: set[asyncio.Task[None]] = set()
        self._logger = Logger(ServiceName.SUPERVISOR)

    def __len__(self) -> int:
        return len(self._registry)

    @property
    def registry(self) -> MonitorRegistry:
        return self._registry

    def is_monitored(self, target_id: TargetID) -> bool:
        return self._registry.contains(target_id)

    def active_targets(self) -> list[TargetID]:
        """Sorted identities of the targets with a live loop."""
        return sorted(self._registry.snapshot())

    @property
    def pending_tasks(self) -> int:
        """Loop tasks that have not finished yet."""
        return len(self._tasks)

    def on_target_qualifies(
        self,
        target_id: TargetID,
        timeout: float,
        resolver: BackendResolver,
    ) -> bool:
        """Start a monitor loop for ``target_id`` unless one is registered.

        Returns:
            True if a new loop was started.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        loop = asyncio.get_running_loop()
        handle = MonitorHandle(target_id)
        if not self._registry.add(target_id, handle):
            return False

        task = loop.create_task(
            run_monitor_loop(
                target_id,
                timeout,
                resolver,
                handle,
                self._metrics,
                probe=self._probe,
                jitter=self._jitter,
            ),
            name=f"monitor:{target_id}",
        )
        handle.attach(task)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self._logger.info("target_qualified", target=str(target_id), timeout_s=timeout)
        return True

    def on_target_disqualifies(self, target_id: TargetID) -> bool:
        """Stop monitoring ``target_id`` and delete its metric series.

        The loop is cancelled before the series are deleted. Series are
        deleted even when no loop was registered.

        Returns:
            True if a running loop was stopped.
        """
        handle = self._registry.pop(target_id)
        if handle is not None:
            handle.cancel()
        removed = self._metrics.delete_target(str(target_id))

        if handle is not None or removed:
            self._logger.info(
                "target_disqualified",
                target=str(target_id),
                stopped=handle is not None,
                series_removed=removed,
            )
        return handle is not None

    async def shutdown(self, timeout: float | None = None) -> None:  # noqa: ASYNC109
        """Cancel every loop and wait for all loop tasks to finish.

        In-flight probes run to completion, so this can take up to one probe
        timeout. With ``timeout`` set, tasks still running afterwards are
        force-cancelled; their probe threads finish on their own deadlines.
        """
        handles = self._registry.pop_all()
        for handle in handles:
            handle.cancel()

        tasks = list(self._tasks)
        if not tasks:
            return
        self._logger.info("supervisor_draining", loops=len(handles), tasks=len(tasks))

        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results, strict=True):
            if isinstance(result, Exception):
                self._logger.error("monitor_crashed", task=task.get_name(), error=str(result))
        self._logger.info("supervisor_stopped", forced=len(pending))
