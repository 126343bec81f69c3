"""CLI entry point for keepalive-monitor.

Two commands share one parser:

* ``controller`` runs the discovery-driven
  [Controller][keepalive_monitor.services.controller.Controller] with a
  Prometheus metrics server until SIGINT/SIGTERM (or a single probe pass
  over the qualifying targets with ``--once``);
* ``check`` measures the idle timeout of one URL and reports through the
  exit code: ``0`` the server closed the connection within the budget,
  ``1`` it did not or the check failed, ``2`` usage error, ``130``
  interrupted.

Examples:
    ```bash
    python -m keepalive_monitor controller --config config/controller.yaml
    python -m keepalive_monitor controller --discovery discovery.yaml --idle-timeout 61s
    keepalive-monitor controller --ingress-class nginx --skip-no-class
    keepalive-check https://example.com/ --timeout 5m
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from keepalive_monitor import __version__
from keepalive_monitor.core import KeepaliveMetrics, start_metrics_server
from keepalive_monitor.core.exceptions import ConfigurationError
from keepalive_monitor.core.logger import Logger, StructuredFormatter
from keepalive_monitor.core.metrics import MetricsConfig
from keepalive_monitor.core.yaml import load_yaml
from keepalive_monitor.models.constants import (
    DEFAULT_CHECK_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    ServiceName,
)
from keepalive_monitor.services.controller import Controller, ControllerConfig
from keepalive_monitor.utils.parsing import parse_duration, parse_probe_url
from keepalive_monitor.utils.probe import measure_timeout_sync


CONFIG_BASE = Path("config")
CONTROLLER_CONFIG = CONFIG_BASE / "controller.yaml"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

logger = Logger("cli")


# ---------------------------------------------------------------------------
# Argument Parsing
# ---------------------------------------------------------------------------


def _duration(value: str) -> float:
    """argparse ``type`` wrapper turning duration errors into usage errors."""
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keepalive-monitor",
        description="HTTP keep-alive idle timeout monitor",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    controller = commands.add_parser(
        ServiceName.CONTROLLER,
        help="Monitor every qualifying target of a discovery snapshot",
    )
    controller.add_argument(
        "--config",
        type=Path,
        help=f"Controller config path (default: {CONTROLLER_CONFIG})",
    )
    controller.add_argument("--discovery", type=Path, help="Discovery snapshot path")
    controller.add_argument(
        "--idle-timeout",
        type=_duration,
        help="Timeout used when probing backends (default: 61s)",
    )
    controller.add_argument(
        "--interval",
        type=_duration,
        help="Time between discovery reconciles (default: 30s)",
    )
    controller.add_argument(
        "--metrics-addr",
        help="Address the metrics endpoint binds to (default: :8080)",
    )
    controller.add_argument(
        "--ingress-class",
        help="Restrict to targets of the given class",
    )
    controller.add_argument(
        "--skip-no-class",
        action="store_true",
        help="Ignore targets without an explicit class",
    )
    controller.add_argument(
        "--once",
        action="store_true",
        help="Probe every qualifying target once, log the results and exit",
    )

    check = commands.add_parser(ServiceName.CHECK, help="Measure the idle timeout of one URL")
    _add_check_arguments(check)
    return parser


def _add_check_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="http:// or https:// URL to probe")
    parser.add_argument(
        "--timeout",
        type=_duration,
        default=DEFAULT_CHECK_TIMEOUT,
        help="Maximum time to wait for the server to close the connection (default: 5m)",
    )


def build_check_parser() -> argparse.ArgumentParser:
    """Parser of the standalone ``keepalive-check`` script."""
    parser = argparse.ArgumentParser(
        prog="keepalive-check",
        description="Measure the HTTP keep-alive idle timeout of one URL",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    _add_check_arguments(parser)
    parser.set_defaults(command=ServiceName.CHECK)
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments of ``keepalive-monitor``."""
    return build_parser().parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on the root handler so that all log
    output, from ``Logger`` and from plain ``logging.getLogger()`` calls in
    utils, is unified as ``level name message key=value ...``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


# ---------------------------------------------------------------------------
# Single-shot Check
# ---------------------------------------------------------------------------


def run_check(url: str, timeout: float) -> int:
    """Probe ``url`` once with the whole ``timeout`` as budget.

    Returns:
        Exit code: 0 if the server closed the idle connection, 1 otherwise.
    """
    try:
        address, use_tls, path = parse_probe_url(url)
    except ValueError as e:
        logger.error("invalid_url", url=url, error=str(e))
        return EXIT_FAILURE

    logger.info("checking", url=url, timeout_s=timeout)
    try:
        result = measure_timeout_sync(
            address,
            timeout,
            use_tls,
            path=path,
            connect_timeout=min(DEFAULT_CONNECT_TIMEOUT, timeout),
        )
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_INTERRUPTED

    elapsed = f"{result.elapsed:.3f}s"
    if result.error is not None:
        logger.error("check_failed", elapsed=elapsed, error=str(result.error))
        return EXIT_FAILURE
    if result.timed_out:
        logger.warning("server_did_not_close", elapsed=elapsed)
        return EXIT_FAILURE
    logger.info("connection_closed_by_server", elapsed=elapsed)
    return EXIT_OK


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(path)


def controller_config_dict(args: argparse.Namespace) -> dict[str, Any]:
    """Merge the YAML configuration with command-line overrides."""
    data = _load_yaml_dict(args.config or CONTROLLER_CONFIG)

    if args.idle_timeout is not None:
        data.setdefault("probe", {})["timeout"] = args.idle_timeout
    if args.interval is not None:
        data["interval"] = args.interval
    if args.discovery is not None:
        data.setdefault("discovery", {})["path"] = str(args.discovery)
    if args.ingress_class is not None:
        data.setdefault("selection", {})["ingress_class"] = args.ingress_class
    if args.skip_no_class:
        data.setdefault("selection", {})["default_class"] = False
    if args.metrics_addr is not None:
        metrics = data.setdefault("metrics", {})
        address = MetricsConfig.from_address(args.metrics_addr)
        metrics.update(host=address.host, port=address.port)
    return data


def _log_measurements(metrics: KeepaliveMetrics) -> None:
    for target, backends in sorted(metrics.series().items()):
        for backend in sorted(backends):
            logger.info(
                "idle_timeout",
                target=target,
                backend=backend,
                seconds=metrics.idle_timeout_value(target, backend),
            )


async def run_controller(controller: Controller, *, once: bool) -> int:
    """Run the controller in one-shot or continuous mode.

    One-shot mode probes every qualifying target once and logs the
    measurements; it starts neither monitor loops nor the metrics server.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    if once:
        try:
            async with controller:
                await controller.run_once()
            _log_measurements(controller.metrics)
            logger.info("controller_completed")
            return EXIT_OK
        except Exception as e:  # CLI error boundary for one-shot mode
            logger.error("controller_failed", error=str(e))
            return EXIT_FAILURE

    metrics_config = controller.config.metrics
    metrics_server = await start_metrics_server(metrics_config, controller.metrics)

    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        controller.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with controller:
            await controller.run_forever()
        return EXIT_OK
    except Exception as e:  # CLI error boundary for continuous mode
        logger.error("controller_failed", error=str(e))
        return EXIT_FAILURE
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


async def main_controller(args: argparse.Namespace) -> int:
    try:
        config = ControllerConfig.model_validate(controller_config_dict(args))
    except (ConfigurationError, ValidationError, ValueError) as e:
        logger.error("config_invalid", error=str(e))
        return EXIT_FAILURE
    controller = Controller(config, metrics=KeepaliveMetrics())
    return await run_controller(controller, once=args.once)


def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, configure logging, run the command."""
    args = parse_args(argv)
    return _dispatch(args)


def _dispatch(args: argparse.Namespace) -> int:
    setup_logging(args.log_level)
    if args.command == ServiceName.CHECK:
        return run_check(args.url, args.timeout)
    try:
        return asyncio.run(main_controller(args))
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_INTERRUPTED


def cli() -> None:
    """Synchronous entry point for the ``keepalive-monitor`` console script."""
    sys.exit(main())


def check_cli() -> None:
    """Synchronous entry point for the ``keepalive-check`` console script."""
    sys.exit(_dispatch(build_check_parser().parse_args()))


if __name__ == "__main__":
    cli()
