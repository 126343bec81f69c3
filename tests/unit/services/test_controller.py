"""
Unit tests for services.controller module.

Tests:
- ProbeConfig / ControllerConfig defaults, duration parsing and validation
- Controller construction and default probe wiring
- run(): qualify, skip and disqualify targets from the discovery snapshot
- run(): vanished targets, snapshot errors and service metrics
- run_once(): single probe pass without monitor loops
- Context manager: probe executor and supervisor shutdown
"""

import functools

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from keepalive_monitor.core.exceptions import ConfigurationError
from keepalive_monitor.models.target import TargetID
from keepalive_monitor.services.controller import (
    Controller,
    ControllerConfig,
    DiscoveryConfig,
    ProbeConfig,
)
from keepalive_monitor.utils.probe import measure_timeout


WEB = TargetID("shop", "web")
API = TargetID("shop", "api")
ADMIN = TargetID("shop", "admin")
OLD = TargetID("shop", "old")

SERVICES = """
services:
  - {namespace: shop, name: web, cluster_ip: 10.0.0.10, ports: [{port: 80}]}
  - {namespace: shop, name: api, cluster_ip: 10.0.0.11, ports: [{name: http, port: 8080}]}
"""

SNAPSHOT = (
    """
targets:
  - {namespace: shop, name: web, ingress_class: nginx, default_backend: {service: web, port: 80}}
  - {namespace: shop, name: api, default_backend: {service: api, port: http}}
  - namespace: shop
    name: admin
    annotations: {keepalive-monitor/ignore: "true"}
    default_backend: {service: web, port: 80}
  - {namespace: shop, name: old, deleted: true, default_backend: {service: web, port: 80}}
"""
    + SERVICES
)


@pytest.fixture
def discovery(tmp_path):
    path = tmp_path / "discovery.yaml"
    path.write_text(SNAPSHOT)
    return path


@pytest.fixture
def make_controller(discovery, metrics, probe):
    def _make(**overrides):
        data = {
            "discovery": {"path": str(discovery)},
            "metrics": {"enabled": False},
            **overrides,
        }
        return Controller(ControllerConfig.model_validate(data), metrics=metrics, probe=probe)

    return _make


# ============================================================================
# Configuration
# ============================================================================


class TestProbeConfig:
    """ProbeConfig defaults and duration parsing."""

    def test_defaults(self):
        config = ProbeConfig()
        assert config.timeout == 61.0
        assert config.connect_timeout == 10.0
        assert config.max_workers == 64
        assert config.jitter == 0.0

    def test_duration_strings(self):
        config = ProbeConfig(timeout="2m", connect_timeout="500ms")
        assert config.timeout == 120.0
        assert config.connect_timeout == 0.5

    @pytest.mark.parametrize(
        "data",
        [
            {"timeout": "soon"},
            {"timeout": 0},
            {"timeout": "-1s"},
            {"connect_timeout": "0s"},
            {"max_workers": 0},
            {"jitter": -0.5},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ValidationError):
            ProbeConfig(**data)

    def test_short_timeout_with_default_connect_timeout(self):
        assert ProbeConfig(timeout="2s").connect_timeout == 10.0


class TestControllerConfig:
    """ControllerConfig composition."""

    def test_defaults(self):
        config = ControllerConfig()
        assert config.interval == 30.0
        assert config.probe == ProbeConfig()
        assert config.selection.default_class is True
        assert config.selection.ingress_class == ""
        assert str(config.discovery.path) == "discovery.yaml"
        assert config.metrics.port == 8080

    def test_from_dict(self):
        config = ControllerConfig.model_validate(
            {
                "interval": "1m",
                "probe": {"timeout": "75s"},
                "selection": {"default_class": False, "ingress_class": "nginx"},
                "discovery": {"path": "/etc/discovery.yaml"},
            }
        )
        assert config.interval == 60.0
        assert config.probe.timeout == 75.0
        assert config.selection.ingress_class == "nginx"
        assert str(config.discovery.path) == "/etc/discovery.yaml"

    def test_interval_minimum(self):
        with pytest.raises(ValidationError):
            ControllerConfig(interval="500ms")

    def test_discovery_config(self):
        assert str(DiscoveryConfig(path="x.yaml").path) == "x.yaml"


# ============================================================================
# Construction
# ============================================================================


class TestInit:
    def test_components(self, make_controller, metrics):
        controller = make_controller()
        assert controller.metrics is metrics
        assert len(controller.supervisor) == 0
        assert controller.SERVICE_NAME == "controller"

    def test_default_probe_clamps_connect_timeout(self, metrics):
        config = ControllerConfig(probe={"timeout": "5s", "connect_timeout": "10s"})
        controller = Controller(config, metrics=metrics)

        probe = controller.supervisor._probe
        assert isinstance(probe, functools.partial)
        assert probe.func is measure_timeout
        assert probe.keywords == {"connect_timeout": 5.0}

    def test_jitter_passed_to_supervisor(self, make_controller):
        controller = make_controller(probe={"jitter": 0.5})
        assert controller.supervisor._jitter == 0.5


# ============================================================================
# Reconcile
# ============================================================================


class TestRun:
    """One reconcile pass against the discovery snapshot."""

    @pytest.mark.asyncio
    async def test_qualifies_and_skips(self, make_controller):
        controller = make_controller()

        await controller.run()

        assert controller.supervisor.active_targets() == [API, WEB]
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_class_selection(self, make_controller):
        controller = make_controller(selection={"ingress_class": "nginx", "default_class": False})

        await controller.run()

        assert controller.supervisor.active_targets() == [WEB]
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_loops_probe_resolved_backends(self, make_controller, probe, sample, eventually):
        controller = make_controller(probe={"timeout": "61s"})

        await controller.run()
        await eventually(lambda: len(probe.calls) >= 2)

        assert sorted(probe.calls) == [
            ("10.0.0.10:80", 61.0, False),
            ("10.0.0.11:8080", 61.0, False),
        ]
        await eventually(lambda: sample("gauge", "shop/api", "api:http") is not None)
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_idempotent(self, make_controller):
        controller = make_controller()

        await controller.run()
        first = controller.supervisor.registry.snapshot()
        await controller.run()

        assert controller.supervisor.registry.snapshot() == first
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_vanished_target_disqualified(
        self, make_controller, discovery, probe, sample, eventually
    ):
        controller = make_controller()
        await controller.run()
        await eventually(lambda: sample("gauge", "shop/api", "api:http") is not None)

        discovery.write_text(
            "targets:\n  - {namespace: shop, name: web, default_backend: {service: web, port: 80}}\n"
            + SERVICES
        )
        await controller.run()

        assert controller.supervisor.active_targets() == [WEB]
        assert sample("gauge", "shop/api", "api:http") is None
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_opt_out_disqualifies_running_target(
        self, make_controller, discovery, sample, eventually
    ):
        controller = make_controller()
        await controller.run()
        await eventually(lambda: sample("gauge", "shop/web", "web:80") is not None)

        discovery.write_text(
            SNAPSHOT.replace(
                "ingress_class: nginx,", "annotations: {keepalive-monitor/ignore: 'true'},"
            )
        )
        await controller.run()

        assert controller.supervisor.active_targets() == [API]
        assert sample("gauge", "shop/web", "web:80") is None
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_snapshot_error_leaves_loops(self, make_controller, discovery):
        controller = make_controller()
        await controller.run()

        discovery.unlink()
        with pytest.raises(ConfigurationError):
            await controller.run()

        assert controller.supervisor.active_targets() == [API, WEB]
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_resolver_follows_snapshot(self, make_controller, discovery):
        controller = make_controller()
        await controller.run()

        discovery.write_text(SNAPSHOT.replace("10.0.0.10", "10.0.0.99"))
        await controller.run()

        resolution = controller.resolver.resolve_now(WEB)
        assert resolution.backends[0].address == "10.0.0.99:80"
        await controller.supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_service_gauges(self, discovery, metrics, probe):
        config = ControllerConfig.model_validate({"discovery": {"path": str(discovery)}})
        controller = Controller(config, metrics=metrics, probe=probe)

        await controller.run()

        def gauge(name):
            return REGISTRY.get_sample_value(
                "service_gauge", {"service": "controller", "name": name}
            )

        assert gauge("monitored_targets") == 2
        assert gauge("discovered_targets") == 4
        await controller.supervisor.shutdown()


# ============================================================================
# One-shot Pass
# ============================================================================


class TestRunOnce:
    """run_once(): one tick per qualifying target, no monitor loops."""

    @pytest.mark.asyncio
    async def test_probes_each_qualifying_target_once(self, make_controller, probe, sample):
        controller = make_controller()

        async with controller:
            probed = await controller.run_once()

        assert probed == 2
        assert sorted(probe.calls) == [
            ("10.0.0.10:80", 61.0, False),
            ("10.0.0.11:8080", 61.0, False),
        ]
        assert sample("gauge", "shop/web", "web:80") == 0.5
        assert sample("gauge", "shop/api", "api:http") == 0.5
        assert sample("gauge", "shop/admin", "web:80") is None
        assert len(controller.supervisor) == 0

    @pytest.mark.asyncio
    async def test_class_selection(self, make_controller, probe):
        controller = make_controller(selection={"ingress_class": "nginx", "default_class": False})

        assert await controller.run_once() == 1
        assert probe.calls == [("10.0.0.10:80", 61.0, False)]

    @pytest.mark.asyncio
    async def test_snapshot_error(self, make_controller, discovery, probe):
        controller = make_controller()
        discovery.unlink()

        with pytest.raises(ConfigurationError):
            await controller.run_once()
        assert probe.calls == []


# ============================================================================
# Context Manager
# ============================================================================


class TestContextManager:
    @pytest.mark.asyncio
    async def test_exit_stops_all_loops(self, make_controller):
        controller = make_controller(probe={"max_workers": 4})

        async with controller:
            executor = controller._executor
            assert executor is not None
            assert executor._max_workers == 4
            await controller.run()
            assert len(controller.supervisor) == 2

        assert len(controller.supervisor) == 0
        assert controller.supervisor.pending_tasks == 0
        assert controller.is_running is False
        assert executor._shutdown is True
        assert controller._executor is None
