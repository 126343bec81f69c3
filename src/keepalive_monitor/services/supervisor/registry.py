"""Lock-guarded registry of running monitor loops.

[MonitorHandle][keepalive_monitor.services.supervisor.registry.MonitorHandle]
is the cancellation capability bound to exactly one monitor loop;
[MonitorRegistry][keepalive_monitor.services.supervisor.registry.MonitorRegistry]
maps each [TargetID][keepalive_monitor.models.target.TargetID] to the handle
of its live loop.

Note:
    A target is present in the registry iff its loop has been started and not
    yet cancelled, so at most one live loop exists per target.
"""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from keepalive_monitor.models.target import TargetID


class MonitorHandle:
    """Cancellation capability for one monitor loop.

    Cancellation is cooperative: the loop checks
    [cancelled][keepalive_monitor.services.supervisor.registry.MonitorHandle.cancelled]
    after each await and sleeps through
    [wait()][keepalive_monitor.services.supervisor.registry.MonitorHandle.wait],
    which returns as soon as the handle is cancelled.
    """

    __slots__ = ("_event", "_task", "target_id")

    def __init__(self, target_id: TargetID) -> None:
        self.target_id = target_id
        self._event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"MonitorHandle(target_id={self.target_id!s}, cancelled={self.cancelled})"

    @property
    def task(self) -> asyncio.Task[None] | None:
        """The loop task, once attached."""
        return self._task

    def attach(self, task: asyncio.Task[None]) -> None:
        if self._task is not None:
            raise RuntimeError(f"handle for {self.target_id} already has a task")
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Request the loop to stop. Idempotent.

        Returns:
            True on the first call, False on later calls.
        """
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        if timeout <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False


class MonitorRegistry:
    """Mapping ``TargetID -> MonitorHandle`` guarded by a single lock.

    Every read and every read-modify-write runs under the lock, so
    [add()][keepalive_monitor.services.supervisor.registry.MonitorRegistry.add]
    is an atomic insert-if-absent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[TargetID, MonitorHandle] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, target_id: object) -> bool:
        with self._lock:
            return target_id in self._handles

    def contains(self, target_id: TargetID) -> bool:
        return target_id in self

    def get(self, target_id: TargetID) -> MonitorHandle | None:
        with self._lock:
            return self._handles.get(target_id)

    def add(self, target_id: TargetID, handle: MonitorHandle) -> bool:
        """Register ``handle`` unless ``target_id`` already has one.

        Returns:
            True if the handle was registered.
        """
        with self._lock:
            if target_id in self._handles:
                return False
            self._handles[target_id] = handle
            return True

    def pop(self, target_id: TargetID) -> MonitorHandle | None:
        with self._lock:
            return self._handles.pop(target_id, None)

    def pop_all(self) -> list[MonitorHandle]:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
            return handles

    def snapshot(self) -> dict[TargetID, MonitorHandle]:
        """Shallow copy of the current mapping."""
        with self._lock:
            return dict(self._handles)
