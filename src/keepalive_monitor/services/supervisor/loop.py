"""
Perpetual monitor loop for one target.

Each tick resolves the target's current backend set, probes every distinct
backend concurrently and publishes one metric update per backend. Series of
backends the target no longer points at are deleted once the tick completes.
Ticks are scheduled on a jittered period measured from tick start; the first
tick runs immediately.

Note:
    The loop never touches the supervisor registry. It stops when its
    [MonitorHandle][keepalive_monitor.services.supervisor.registry.MonitorHandle]
    is cancelled. The handle is checked right after every probe completes
    and the metric write follows without an intervening ``await``, so once
    ``cancel()`` has returned no further write happens for the target.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

from keepalive_monitor.core.exceptions import BackendResolveError, TargetResolveError
from keepalive_monitor.core.logger import Logger
from keepalive_monitor.models.constants import ServiceName
from keepalive_monitor.utils.probe import measure_timeout


if TYPE_CHECKING:
    from keepalive_monitor.core.metrics import KeepaliveMetrics
    from keepalive_monitor.models.target import Backend, BackendResolution, ProbeResult, TargetID

    from .registry import MonitorHandle


ProbeFunc = Callable[[str, float, bool], Awaitable["ProbeResult"]]


class BackendResolver(Protocol):
    """Capability resolving a target to its current backend set."""

    async def resolve(self, target_id: TargetID) -> BackendResolution:
        """Return the target's backends and per-backend failures.

        Raises:
            TargetResolveError: If the target itself cannot be resolved.
        """
        ...


_logger = Logger(ServiceName.MONITOR)


def jittered_period(base: float, factor: float = 0.0) -> float:
    """Random period in ``[base, base * (1 + factor)]``.

    A non-positive ``factor`` is normalized to ``1.0``.
    """
    if factor <= 0:
        factor = 1.0
    return base + random.uniform(0, base * factor)  # noqa: S311


async def _probe_and_publish(
    label: str,
    backend: Backend,
    timeout: float,
    handle: MonitorHandle,
    metrics: KeepaliveMetrics,
    probe: ProbeFunc,
) -> None:
    result = await probe(backend.address, timeout, backend.tls)
    if handle.cancelled:
        return

    if result.error is not None:
        metrics.record_error(label, backend.identity)
        _logger.warning(
            "probe_failed",
            target=label,
            backend=backend.identity,
            address=backend.address,
            elapsed_s=round(result.elapsed, 3),
            error=str(result.error),
        )
        return

    metrics.set_idle_timeout(label, backend.identity, result.elapsed)
    if result.timed_out:
        _logger.info(
            "probe_timed_out",
            target=label,
            backend=backend.identity,
            elapsed_s=round(result.elapsed, 3),
        )
    else:
        _logger.debug(
            "probe_completed",
            target=label,
            backend=backend.identity,
            elapsed_s=round(result.elapsed, 3),
        )


def _prune_stale(label: str, resolution: BackendResolution, metrics: KeepaliveMetrics) -> None:
    """Drop series of backends the target no longer points at.

    Backends that merely failed to resolve this tick keep their series.
    """
    keep = {b.identity for b in resolution.backends}
    keep.update(e.backend for e in resolution.errors if isinstance(e, BackendResolveError))
    stale = metrics.series().get(label, frozenset()) - keep
    if stale:
        metrics.delete_series(label, stale)
        _logger.info("stale_series_deleted", target=label, backends=",".join(sorted(stale)))


async def run_tick(
    target_id: TargetID,
    timeout: float,
    resolver: BackendResolver,
    handle: MonitorHandle,
    metrics: KeepaliveMetrics,
    probe: ProbeFunc = measure_timeout,
) -> int:
    """Run one resolve-probe-publish cycle.

    Returns:
        Number of backends probed.
    """
    label = str(target_id)
    try:
        resolution = await resolver.resolve(target_id)
    except TargetResolveError as e:
        _logger.warning("resolve_failed", target=label, error=str(e))
        return 0
    if handle.cancelled:
        return 0

    for error in resolution.errors:
        _logger.warning(
            "backend_resolve_failed",
            target=label,
            backend=error.backend if isinstance(error, BackendResolveError) else "",
            error=str(error),
        )

    backends = resolution.unique()
    if not backends:
        _logger.debug("no_backends", target=label)
        _prune_stale(label, resolution, metrics)
        return 0

    results = await asyncio.gather(
        *(_probe_and_publish(label, b, timeout, handle, metrics, probe) for b in backends),
        return_exceptions=True,
    )
    for backend, result in zip(backends, results, strict=True):
        # gather(return_exceptions=True) captures CancelledError as a result
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            _logger.error(
                "probe_crashed",
                target=label,
                backend=backend.identity,
                error=f"{type(result).__name__}: {result}",
            )
    if not handle.cancelled:
        _prune_stale(label, resolution, metrics)
    return len(backends)


async def run_monitor_loop(  # noqa: PLR0913
    target_id: TargetID,
    timeout: float,
    resolver: BackendResolver,
    handle: MonitorHandle,
    metrics: KeepaliveMetrics,
    *,
    probe: ProbeFunc = measure_timeout,
    jitter: float = 0.0,
) -> None:
    """Probe ``target_id`` every jittered ``timeout`` period until cancelled.

    Args:
        target_id: Target whose backends are probed.
        timeout: Probe read deadline and base period of the schedule.
        resolver: Source of the target's current backend set.
        handle: Cancellation capability owned by the supervisor.
        metrics: Sink receiving one update per probed backend.
        probe: Measurement function, ``measure_timeout`` by default.
        jitter: Jitter factor; the period is uniform in
            ``[timeout, timeout * (1 + jitter)]`` with ``0`` meaning ``1``.

    Note:
        Errors inside a tick are logged and the loop carries on;
        ``CancelledError`` propagates.
    """
    label = str(target_id)
    _logger.info("monitor_started", target=label, timeout_s=timeout)
    try:
        while not handle.cancelled:
            started = time.monotonic()
            period = jittered_period(timeout, jitter)
            try:
                await run_tick(target_id, timeout, resolver, handle, metrics, probe)
            except Exception as e:  # Error boundary: one bad tick must not end the loop
                _logger.error("tick_failed", target=label, error=f"{type(e).__name__}: {e}")

            remaining = period - (time.monotonic() - started)
            if await handle.wait(max(0.0, remaining)):
                break
    finally:
        _logger.info("monitor_stopped", target=label)
