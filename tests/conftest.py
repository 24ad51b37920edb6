from __future__ import annotations

import itertools

import pytest

from svcwatch.docker_ops import ContainerInfo, ContainerRef
from svcwatch.errors import ContainerRuntimeError
from svcwatch.health import HealthProber
from svcwatch.models import ServiceDescriptor


class FakeRuntime:
    """In-memory ContainerRuntime; a running container 'publishes' its port."""

    def __init__(self) -> None:
        self.containers: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, Exception] = {}
        # State given to containers created by run().
        self.health_after_run: str | None = "healthy"
        self.port_open_after_run = True
        self._ids = itertools.count(1)

    def add(self, name: str, port: int = 3000, running: bool = True, health: str | None = "healthy", port_open: bool = True) -> None:
        self.containers[name] = {
            "id": f"{next(self._ids):064x}",
            "running": running,
            "health": health,
            "port": port,
            "port_open": port_open,
            "logs": ["booting", "listening"],
        }

    def _call(self, op: str, name: str) -> None:
        self.calls.append((op, name))
        if op in self.fail_on:
            raise self.fail_on[op]

    def inspect(self, name: str) -> ContainerInfo | None:
        self._call("inspect", name)
        c = self.containers.get(name)
        if c is None:
            return None
        return ContainerInfo(
            id=c["id"],
            name=name,
            status="running" if c["running"] else "exited",
            running=c["running"],
            health=c["health"] if c["running"] else None,
            ports=f"0.0.0.0:{c['port']}->{c['port']}/tcp",
        )

    def run(self, descriptor: ServiceDescriptor) -> ContainerRef:
        self._call("run", descriptor.name)
        if descriptor.name in self.containers:
            raise ContainerRuntimeError(f"Conflict. The container name {descriptor.name} is already in use")
        self.add(
            descriptor.name,
            port=descriptor.port,
            health=self.health_after_run,
            port_open=self.port_open_after_run,
        )
        return ContainerRef(id=self.containers[descriptor.name]["id"], name=descriptor.name)

    def stop(self, name: str, timeout: int = 10) -> None:
        self._call("stop", name)
        if name in self.containers:
            self.containers[name]["running"] = False

    def remove(self, name: str) -> None:
        self._call("remove", name)
        self.containers.pop(name, None)

    def logs_tail(self, name: str, lines: int = 10) -> list[str]:
        self._call("logs", name)
        c = self.containers.get(name)
        return list(c["logs"][-lines:]) if c else []

    def port_check(self, host: str, port: int, timeout_s: float) -> tuple[bool, str]:
        for c in self.containers.values():
            if c["port"] == port and c["running"] and c["port_open"]:
                return True, "Accepting connections"
        return False, "ConnectionRefusedError: [Errno 111] Connection refused"

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls if op != "inspect"]


@pytest.fixture
def descriptor() -> ServiceDescriptor:
    return ServiceDescriptor(
        name="sp1-gpu",
        image="public.ecr.aws/succinct-labs/moongate:v5.0.0",
        port=3000,
        probe_timeout_s=1,
        poll_interval_s=0,
        max_attempts=3,
        check_interval_s=0.01,
    )


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def prober(runtime: FakeRuntime) -> HealthProber:
    return HealthProber(runtime, port_check=runtime.port_check)
