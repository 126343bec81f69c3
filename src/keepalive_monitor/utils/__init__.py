"""Probe engine and parsing helpers.

The utils layer sits in the middle of the diamond DAG, depending only on
[keepalive_monitor.models][keepalive_monitor.models] and the dependency-free
exception hierarchy in ``keepalive_monitor.core.exceptions``.

Attributes:
    parsing: Duration strings (``61s``, ``1h30m``) and ``http(s)://`` probe
        URLs.
    probe: Connection-level measurement of the HTTP keep-alive idle timeout.

Examples:
    ```python
    from keepalive_monitor.utils.probe import measure_timeout

    result = await measure_timeout("example.com:443", 61.0, use_tls=True)
    ```
"""
