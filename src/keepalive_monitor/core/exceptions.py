"""keepalive-monitor exception hierarchy.

Provides typed exceptions for every error category so callers catch
specific failures instead of bare ``except Exception`` and let
``CancelledError`` propagate untouched.

Exception hierarchy:

```text
KeepaliveMonitorError (base -- never raised directly)
├── ConfigurationError        -- config validation, bad YAML, bad discovery snapshot
├── ProbeError                -- one idle-timeout measurement failed (carries elapsed)
│   ├── ConnectError          -- TCP connect or TLS handshake failed
│   ├── RequestWriteError     -- sending the request failed
│   ├── ResponseParseError    -- no parsable HTTP response
│   ├── BodyDrainError        -- response body could not be drained
│   ├── ReadDeadlineSetError  -- arming the idle read deadline failed
│   └── OtherReadError        -- idle read failed for a reason other than EOF/deadline
└── ResolveError              -- discovery could not produce a dialable backend
    ├── TargetResolveError    -- the target itself is unknown (skip the tick)
    └── BackendResolveError   -- one backend reference is unresolvable (skip the backend)
```

See Also:
    [measure_timeout()][keepalive_monitor.utils.probe.measure_timeout]:
        Converts every [ProbeError][keepalive_monitor.core.exceptions.ProbeError]
        into a [ProbeResult][keepalive_monitor.models.target.ProbeResult].
    [run_monitor_loop()][keepalive_monitor.services.supervisor.loop.run_monitor_loop]:
        Logs [ResolveError][keepalive_monitor.core.exceptions.ResolveError]
        subclasses and skips the affected unit of work.
"""

from __future__ import annotations


class KeepaliveMonitorError(Exception):
    """Base exception for all keepalive-monitor errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(KeepaliveMonitorError):
    """Invalid or missing configuration (YAML, discovery snapshot, CLI flags)."""


# ---------------------------------------------------------------------------
# Probing
# ---------------------------------------------------------------------------


class ProbeError(KeepaliveMonitorError):
    """Base for failures of a single idle-timeout measurement.

    Terminal for that one probe call only: the monitor loop records it as an
    error sample and waits for the next tick.

    Attributes:
        elapsed: Seconds measured on the idle read when the failure happened
            (``0.0`` for failures before the idle read started).
    """

    def __init__(self, message: str, *, elapsed: float = 0.0) -> None:
        super().__init__(message)
        self.elapsed = elapsed


class ConnectError(ProbeError):
    """TCP connection or TLS handshake to the backend failed."""


class RequestWriteError(ProbeError):
    """Writing the HTTP request onto the connection failed."""


class ResponseParseError(ProbeError):
    """Reading or parsing the HTTP response failed."""


class BodyDrainError(ProbeError):
    """Draining the response body failed."""


class ReadDeadlineSetError(ProbeError):
    """Arming the read deadline on the idle connection failed."""


class OtherReadError(ProbeError):
    """The idle read ended with something other than EOF or the deadline."""


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolveError(KeepaliveMonitorError):
    """Base for discovery failures while resolving a target's backends."""


class TargetResolveError(ResolveError):
    """The target cannot be resolved (e.g. it no longer exists)."""


class BackendResolveError(ResolveError):
    """One backend reference of a target cannot be resolved to an address.

    Attributes:
        backend: Identity of the unresolvable backend reference.
    """

    def __init__(self, message: str, *, backend: str = "") -> None:
        super().__init__(message)
        self.backend = backend
