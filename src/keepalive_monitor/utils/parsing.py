"""Parsing of durations and probe URLs.

Durations are accepted either as plain seconds (``61``, ``"0.5"``) or as
Go-style duration strings (``"250ms"``, ``"61s"``, ``"5m"``, ``"1h30m"``) so
that configuration files and command-line flags read the same way.

The module depends only on :mod:`keepalive_monitor.models` and the standard
library, keeping it safe to import from any layer above ``models``.

Examples:
    ```python
    from keepalive_monitor.utils.parsing import parse_duration, parse_probe_url

    parse_duration("1m30s")                       # 90.0
    parse_probe_url("https://example.com/health")  # ('example.com:443', True, '/health')
    ```
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from keepalive_monitor.models.target import join_address


_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}


def parse_duration(value: str | float) -> float:
    """Convert seconds or a duration string into non-negative seconds.

    Raises:
        ValueError: If the value is negative, empty or malformed.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    elif not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_components(text)
    if seconds < 0 or seconds != seconds:  # NaN
        raise ValueError(f"duration must be a non-negative number of seconds: {value!r}")
    return seconds


def _parse_components(text: str) -> float:
    if not text:
        raise ValueError("empty duration")
    total = 0.0
    pos = 0
    for match in _COMPONENT.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {text!r}")
    return total


def default_port(use_tls: bool) -> int:
    return DEFAULT_PORTS["https" if use_tls else "http"]


def parse_probe_url(url: str) -> tuple[str, bool, str]:
    """Split an ``http(s)://host[:port][/path]`` URL into probe arguments.

    Returns:
        ``(address, use_tls, path)`` where ``address`` is a dialable
        ``host:port`` (default ports 80/443) and ``path`` includes the query
        string, defaulting to ``/``.

    Raises:
        ValueError: If the scheme is not http/https, the host is missing or
            the port is invalid.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported URL scheme {parts.scheme!r}, expected http or https")
    if not parts.hostname:
        raise ValueError(f"URL has no host: {url!r}")
    port = parts.port or DEFAULT_PORTS[scheme]
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return join_address(parts.hostname, port), scheme == "https", path


__all__ = [
    "DEFAULT_PORTS",
    "default_port",
    "parse_duration",
    "parse_probe_url",
]
