"""
HTTP keep-alive idle timeout probe.

Measures how long a server keeps an idle HTTP/1.1 connection open after a
completed response. One call opens exactly one TCP (optionally TLS)
connection, sends one bare ``GET``, reads and drains one response and then
blocks on a single-byte read until the server closes the connection or the
read deadline fires.

Note:
    ``http.client`` is only used to serialize the request and parse the
    response on a socket this module owns: no pooling, redirects, retries,
    compression or proxy handling take place. The socket work is blocking and
    is delegated to a worker thread via ``asyncio.to_thread``.

    Certificate verification is disabled on purpose: the probe measures
    connection behavior, not certificate validity.

See Also:
    [ProbeResult][keepalive_monitor.models.target.ProbeResult]: Returned by
        [measure_timeout()][keepalive_monitor.utils.probe.measure_timeout].
    [ProbeError][keepalive_monitor.core.exceptions.ProbeError]: Base of the
        failure taxonomy, one subclass per probe step.
"""

from __future__ import annotations

import asyncio
import contextlib
import http.client
import logging
import socket
import ssl
import time
from ipaddress import ip_address

from keepalive_monitor.core.exceptions import (
    BodyDrainError,
    ConnectError,
    OtherReadError,
    ProbeError,
    ReadDeadlineSetError,
    RequestWriteError,
    ResponseParseError,
)
from keepalive_monitor.models.constants import DEFAULT_CONNECT_TIMEOUT, USER_AGENT
from keepalive_monitor.models.target import ProbeResult, join_address, split_address

from .parsing import default_port


logger = logging.getLogger(__name__)


def _insecure_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    # Only HTTP/1.1 is spoken on the connection.
    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(["http/1.1"])
    return ctx


def _server_name(host: str) -> str | None:
    """SNI is only sent for DNS names, never for IP literals."""
    try:
        ip_address(host)
    except ValueError:
        return host
    return None


def host_header(host: str, port: int, use_tls: bool) -> str:
    """Value of the ``Host`` header; the port is omitted when it is the scheme default."""
    if port == default_port(use_tls):
        return join_address(host, port).rpartition(":")[0]
    return join_address(host, port)


def _connect(host: str, port: int, use_tls: bool, connect_timeout: float) -> socket.socket:
    try:
        sock = socket.create_connection((host, port), timeout=connect_timeout)
    except OSError as e:
        raise ConnectError(f"connect to {join_address(host, port)} failed: {e}") from e
    if not use_tls:
        return sock
    try:
        return _insecure_context().wrap_socket(sock, server_hostname=_server_name(host))
    except OSError as e:
        sock.close()
        raise ConnectError(f"TLS handshake with {join_address(host, port)} failed: {e}") from e


def _measure(
    address: str,
    timeout: float,
    use_tls: bool,
    path: str,
    connect_timeout: float,
) -> ProbeResult:
    """Blocking implementation of one measurement. Raises ``ProbeError``."""
    try:
        host, port = split_address(address)
    except ValueError as e:
        raise ConnectError(str(e)) from e

    sock = _connect(host, port, use_tls, connect_timeout)
    conn = http.client.HTTPConnection(host, port, timeout=timeout)
    conn.sock = sock

    with contextlib.closing(sock), contextlib.closing(conn):
        try:
            sock.settimeout(timeout)
            conn.putrequest("GET", path, skip_host=True, skip_accept_encoding=True)
            conn.putheader("Host", host_header(host, port, use_tls))
            conn.putheader("User-Agent", USER_AGENT)
            conn.endheaders()
        except (OSError, ValueError, http.client.HTTPException) as e:
            raise RequestWriteError(f"writing request failed: {e}") from e

        try:
            response = conn.getresponse()
        except (OSError, http.client.HTTPException) as e:
            raise ResponseParseError(f"reading response failed: {e}") from e

        with contextlib.closing(response):
            if response.will_close:
                logger.debug("keepalive_refused address=%s status=%s", address, response.status)
                return ProbeResult(elapsed=0.0, timed_out=False)

            try:
                response.read()
            except (OSError, http.client.HTTPException) as e:
                raise BodyDrainError(f"draining response body failed: {e}") from e

        try:
            sock.settimeout(timeout)
        except (OSError, ValueError) as e:
            raise ReadDeadlineSetError(f"setting read deadline failed: {e}") from e

        start = time.perf_counter()
        try:
            data = sock.recv(1)
        except TimeoutError:
            return ProbeResult(elapsed=time.perf_counter() - start, timed_out=True)
        except OSError as e:
            elapsed = time.perf_counter() - start
            raise OtherReadError(f"idle read failed: {e}", elapsed=elapsed) from e
        elapsed = time.perf_counter() - start

        if data:
            raise OtherReadError("unexpected data on idle connection", elapsed=elapsed)
        return ProbeResult(elapsed=elapsed, timed_out=False)


def measure_timeout_sync(
    address: str,
    timeout: float,
    use_tls: bool = False,
    *,
    path: str = "/",
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> ProbeResult:
    """Blocking variant of [measure_timeout()][keepalive_monitor.utils.probe.measure_timeout].

    Runs on the calling thread, so a ``KeyboardInterrupt`` aborts the idle
    read directly. Used by the single-shot checker.
    """
    try:
        return _measure(address, timeout, use_tls, path, connect_timeout)
    except ProbeError as e:
        logger.debug("probe_error address=%s error=%s", address, e)
        return ProbeResult(elapsed=e.elapsed, error=e)


async def measure_timeout(
    address: str,
    timeout: float,
    use_tls: bool = False,
    *,
    path: str = "/",
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> ProbeResult:
    """Measure the keep-alive idle timeout of one backend.

    Args:
        address: Dialable ``host:port`` (IPv6 hosts bracketed).
        timeout: Read deadline in seconds; also bounds the request and
            response steps.
        use_tls: Wrap the connection in TLS without certificate verification.
        path: Request path, ``/`` by default.
        connect_timeout: Upper bound for the TCP connect and TLS handshake.

    Returns:
        [ProbeResult][keepalive_monitor.models.target.ProbeResult]:

        * ``(elapsed, False, None)``: the server closed the idle connection
          after ``elapsed`` seconds;
        * ``(elapsed, True, None)``: the deadline fired first, ``elapsed`` is
          a lower bound;
        * ``(0.0, False, None)``: the server refused keep-alive outright;
        * ``(elapsed, False, error)``: a step failed, see
          [ProbeError][keepalive_monitor.core.exceptions.ProbeError].

    Note:
        Never raises ``ProbeError``. Cancelling the awaiting task does not
        interrupt the worker thread; it finishes within its own deadlines.
    """
    return await asyncio.to_thread(
        measure_timeout_sync,
        address,
        timeout,
        use_tls,
        path=path,
        connect_timeout=connect_timeout,
    )


__all__ = [
    "host_header",
    "measure_timeout",
    "measure_timeout_sync",
]
