from __future__ import annotations

import logging
import socket
import time
from typing import Callable

from .docker_ops import ContainerRuntime
from .errors import ContainerRuntimeError, ProbeTimeout, RuntimeUnavailable
from .models import HealthSignal, RuntimeHealth, ServiceDescriptor


log = logging.getLogger(__name__)

PortCheck = Callable[[str, int, float], tuple[bool, str]]


def check_port(host: str, port: int, timeout_s: float = 5.0) -> tuple[bool, str]:
    """TCP connect to host:port.

    Returns (reachable, message).
    """
    start = time.time()
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            pass
    except socket.timeout:
        return False, f"Timed out after {timeout_s}s"
    except OSError as e:
        return False, f"{type(e).__name__}: {e}"
    latency_ms = round((time.time() - start) * 1000.0, 2)
    return True, f"Accepting connections ({latency_ms} ms)"


def _map_runtime_health(raw: str | None, assume_healthy: bool) -> RuntimeHealth:
    if raw == "healthy":
        return RuntimeHealth.HEALTHY
    if raw == "unhealthy":
        return RuntimeHealth.UNHEALTHY
    if raw is None and assume_healthy:
        return RuntimeHealth.HEALTHY
    return RuntimeHealth.UNKNOWN


class HealthProber:
    """Runs the three independent checks and never raises for a failing one."""

    def __init__(self, runtime: ContainerRuntime, port_check: PortCheck = check_port) -> None:
        self.runtime = runtime
        self.port_check = port_check

    def probe(self, descriptor: ServiceDescriptor) -> HealthSignal:
        details: dict[str, str] = {}

        running, details["container"] = self._container_running(descriptor)

        try:
            reachable, details["port"] = self.port_check(descriptor.host, descriptor.port, descriptor.probe_timeout_s)
        except OSError as e:
            reachable, details["port"] = False, f"{type(e).__name__}: {e}"

        if running:
            health, details["runtime_health"] = self._runtime_health(descriptor)
        else:
            health, details["runtime_health"] = RuntimeHealth.UNKNOWN, "Container not running"

        return HealthSignal(
            container_running=running,
            port_reachable=reachable,
            runtime_health=health,
            details=details,
        )

    def _container_running(self, descriptor: ServiceDescriptor) -> tuple[bool, str]:
        try:
            info = self.runtime.inspect(descriptor.name)
        except RuntimeUnavailable as e:
            log.error("Container runtime unavailable: %s", e)
            return False, f"Runtime unavailable: {e}"
        except (ProbeTimeout, ContainerRuntimeError) as e:
            return False, str(e)
        if info is None:
            return False, "Container does not exist"
        if not info.running:
            return False, f"Container is {info.status}"
        return True, "Running"

    def _runtime_health(self, descriptor: ServiceDescriptor) -> tuple[RuntimeHealth, str]:
        try:
            info = self.runtime.inspect(descriptor.name)
        except (RuntimeUnavailable, ProbeTimeout, ContainerRuntimeError) as e:
            return RuntimeHealth.UNKNOWN, str(e)
        if info is None:
            return RuntimeHealth.UNKNOWN, "Container disappeared"
        health = _map_runtime_health(info.health, descriptor.assume_healthy_without_healthcheck)
        return health, info.health or "No health check configured"
