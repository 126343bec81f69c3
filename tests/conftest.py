"""
Pytest configuration and shared fixtures for keepalive-monitor tests.

Provides:
- Fresh Prometheus registries and metric sinks per test
- A scripted backend resolver and probe for supervisor/loop tests
- A loopback HTTP server with configurable keep-alive behavior
- A self-signed certificate for TLS probe tests
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import ipaddress
import logging
import ssl
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from prometheus_client import CollectorRegistry

from keepalive_monitor.core.exceptions import TargetResolveError
from keepalive_monitor.core.metrics import KeepaliveMetrics
from keepalive_monitor.models.target import Backend, BackendResolution, ProbeResult, TargetID


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Metrics
# ============================================================================


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated registry so tests never touch the process-wide default."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> KeepaliveMetrics:
    return KeepaliveMetrics(registry)


@pytest.fixture
def sample(registry: CollectorRegistry) -> Callable[..., float | None]:
    """Read one keep-alive sample: ``sample("gauge"|"errors", target, backend)``."""
    names = {
        "gauge": "http_keepalive_idle_timeout_seconds",
        "errors": "http_keepalive_errors_total",
    }

    def _sample(kind: str, target: str, backend: str) -> float | None:
        return registry.get_sample_value(names[kind], {"target": target, "backend": backend})

    return _sample


# ============================================================================
# Targets, Resolver, Probe
# ============================================================================


@pytest.fixture
def target_id() -> TargetID:
    return TargetID("shop", "web")


class ScriptedResolver:
    """Resolver returning a mutable backend set; records every call."""

    def __init__(self, *backends: Backend) -> None:
        self.backends: list[Backend] = list(backends)
        self.errors: list[Exception] = []
        self.missing = False
        self.crash: Exception | None = None
        self.calls: list[TargetID] = []

    async def resolve(self, target_id: TargetID) -> BackendResolution:
        self.calls.append(target_id)
        if self.crash is not None:
            raise self.crash
        if self.missing:
            raise TargetResolveError(f"target {target_id} not found")
        return BackendResolution(backends=tuple(self.backends), errors=tuple(self.errors))


class ScriptedProbe:
    """Async probe stand-in.

    Returns ``result`` (or the result mapped for the address), optionally
    holding every call until ``release`` is set.
    """

    def __init__(self, result: ProbeResult | None = None) -> None:
        self.result = result if result is not None else ProbeResult(elapsed=0.5)
        self.by_address: dict[str, ProbeResult | Exception] = {}
        self.calls: list[tuple[str, float, bool]] = []
        self.hold = False
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.delay = 0.0

    async def __call__(self, address: str, timeout: float, use_tls: bool) -> ProbeResult:
        self.calls.append((address, timeout, use_tls))
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.hold:
            await self.release.wait()
        outcome = self.by_address.get(address, self.result)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def backend() -> Backend:
    return Backend(address="10.0.0.10:80", identity="web:80")


@pytest.fixture
def resolver(backend: Backend) -> ScriptedResolver:
    return ScriptedResolver(backend)


@pytest.fixture
def probe() -> ScriptedProbe:
    return ScriptedProbe()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:  # noqa: ASYNC109
    """Poll ``predicate`` on the event loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    return wait_until


# ============================================================================
# Loopback HTTP Server
# ============================================================================

OK_RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\nok"


class LoopbackServer:
    """Minimal HTTP server answering one request per connection.

    After the response the connection stays idle for ``close_after`` seconds
    before the server closes it; ``None`` keeps it open until ``stop()``.
    ``trailer`` is written ``trailer_after`` seconds after the response.
    """

    def __init__(
        self,
        response: bytes = OK_RESPONSE,
        *,
        close_after: float | None = None,
        trailer: bytes = b"",
        trailer_after: float = 0.0,
    ) -> None:
        self.response = response
        self.close_after = close_after
        self.trailer = trailer
        self.trailer_after = trailer_after
        self.requests: list[bytes] = []
        self._stopping = asyncio.Event()
        self._server: asyncio.Server | None = None

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    async def start(self, ssl_context: ssl.SSLContext | None = None) -> LoopbackServer:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0, ssl=ssl_context)
        return self

    async def stop(self) -> None:
        self._stopping.set()
        if self._server is not None:
            self._server.close()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._server.wait_closed(), timeout=2.0)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await reader.readuntil(b"\r\n\r\n")
            self.requests.append(request)
            writer.write(self.response)
            await writer.drain()
            if self.trailer:
                await asyncio.sleep(self.trailer_after)
                writer.write(self.trailer)
                await writer.drain()
            if self.close_after is None:
                await self._stopping.wait()
            else:
                await asyncio.sleep(self.close_after)
        except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, ConnectionError, ssl.SSLError):
            pass
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError, ssl.SSLError, asyncio.TimeoutError):
                await asyncio.wait_for(writer.wait_closed(), timeout=1.0)


@pytest_asyncio.fixture
async def http_server() -> AsyncIterator[Callable[..., Awaitable[LoopbackServer]]]:
    """Factory starting loopback servers; all are stopped at teardown."""
    servers: list[LoopbackServer] = []

    async def _start(
        response: bytes = OK_RESPONSE,
        *,
        ssl_context: ssl.SSLContext | None = None,
        **kwargs: object,
    ) -> LoopbackServer:
        server = await LoopbackServer(response, **kwargs).start(ssl_context)  # type: ignore[arg-type]
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.stop()


@pytest.fixture
def unused_port() -> int:
    """A local port with nothing listening on it."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ============================================================================
# TLS
# ============================================================================


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory: pytest.TempPathFactory) -> tuple[Path, Path]:
    """Self-signed certificate and key for ``localhost`` / ``127.0.0.1``."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName("localhost"), x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    directory = tmp_path_factory.mktemp("tls")
    cert_path = directory / "cert.pem"
    key_path = directory / "key.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture
def server_ssl_context(tls_files: tuple[Path, Path]) -> ssl.SSLContext:
    cert_path, key_path = tls_files
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(cert_path, key_path)
    return ctx
