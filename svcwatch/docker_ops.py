from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol

import docker
import requests
from docker.errors import APIError, DockerException, NotFound
from docker.types import DeviceRequest

from .errors import ContainerRuntimeError, ProbeTimeout, RuntimeUnavailable
from .models import ServiceDescriptor


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    name: str
    status: str  # created|running|restarting|paused|exited|dead
    running: bool
    health: str | None = None  # starting|healthy|unhealthy, None without a HEALTHCHECK
    ports: str = ""


class ContainerRuntime(Protocol):
    """The narrow slice of a container engine the watchdog relies on."""

    def inspect(self, name: str) -> ContainerInfo | None: ...

    def run(self, descriptor: ServiceDescriptor) -> ContainerRef: ...

    def stop(self, name: str, timeout: int = 10) -> None: ...

    def remove(self, name: str) -> None: ...

    def logs_tail(self, name: str, lines: int = 10) -> list[str]: ...


def device_requests(gpus: str | None) -> list[DeviceRequest]:
    """Equivalent of ``docker run --gpus``."""
    if gpus is None:
        return []
    if gpus == "all":
        return [DeviceRequest(count=-1, capabilities=[["gpu"]])]
    return [DeviceRequest(device_ids=gpus.split(","), capabilities=[["gpu"]])]


def format_ports(ports: dict[str, Any] | None) -> str:
    out: list[str] = []
    for container_port, bindings in sorted((ports or {}).items()):
        if not bindings:
            out.append(container_port)
            continue
        for b in bindings:
            out.append(f"{b.get('HostIp') or '0.0.0.0'}:{b.get('HostPort')}->{container_port}")
    return ", ".join(out)


@contextmanager
def _runtime_call(op: str) -> Iterator[None]:
    """Translate docker SDK / transport errors into the watchdog taxonomy.

    NotFound passes through untouched: callers decide whether absence is fine.
    """
    try:
        yield
    except NotFound:
        raise
    except requests.exceptions.Timeout as e:
        raise ProbeTimeout(f"docker {op} timed out") from e
    except requests.exceptions.ConnectionError as e:
        raise RuntimeUnavailable(f"docker {op}: daemon unreachable ({e})") from e
    except APIError as e:
        raise ContainerRuntimeError(f"docker {op} failed: {e.explanation or e}") from e
    except DockerException as e:
        raise RuntimeUnavailable(f"docker {op}: {e}") from e


class DockerRuntime:
    """ContainerRuntime backed by the docker SDK.

    ``timeout`` is the HTTP timeout of every API call, so no call blocks
    longer than that (``stop`` adds the container's own grace period).
    """

    def __init__(self, timeout: float = 5.0, client_factory: Callable[..., Any] | None = None) -> None:
        self.timeout = timeout
        self._client_factory = client_factory or docker.from_env
        self._c: Any = None

    def _client(self) -> Any:
        if self._c is None:
            with _runtime_call("connect"):
                self._c = self._client_factory(timeout=self.timeout)
        return self._c

    def _get(self, name: str) -> Any | None:
        with _runtime_call("inspect"):
            try:
                return self._client().containers.get(name)
            except NotFound:
                return None

    def inspect(self, name: str) -> ContainerInfo | None:
        cont = self._get(name)
        if cont is None:
            return None
        state = cont.attrs.get("State") or {}
        health = (state.get("Health") or {}).get("Status")
        ports = (cont.attrs.get("NetworkSettings") or {}).get("Ports")
        return ContainerInfo(
            id=cont.id,
            name=cont.name,
            status=cont.status,
            running=bool(state.get("Running", cont.status == "running")),
            health=health,
            ports=format_ports(ports),
        )

    def run(self, descriptor: ServiceDescriptor) -> ContainerRef:
        d = descriptor
        with _runtime_call("run"):
            try:
                container = self._client().containers.run(
                    d.image,
                    detach=True,
                    name=d.name,
                    ports={f"{d.target_port}/tcp": d.port},
                    device_requests=device_requests(d.gpus),
                    restart_policy={"Name": d.restart_policy},
                    environment=dict(d.environment),
                )
            except NotFound as e:
                # ImageNotFound is a NotFound; absence of the image is a real failure here.
                raise ContainerRuntimeError(f"docker run failed: {e.explanation or e}") from e
        log.info("Started container %s from image %s", d.name, d.image)
        return ContainerRef(id=container.id, name=d.name)

    def stop(self, name: str, timeout: int = 10) -> None:
        cont = self._get(name)
        if cont is None:
            return
        with _runtime_call("stop"):
            try:
                cont.stop(timeout=timeout)
            except NotFound:
                return

    def remove(self, name: str) -> None:
        cont = self._get(name)
        if cont is None:
            return
        with _runtime_call("rm"):
            try:
                cont.remove(force=True)
            except NotFound:
                return

    def logs_tail(self, name: str, lines: int = 10) -> list[str]:
        cont = self._get(name)
        if cont is None:
            return []
        with _runtime_call("logs"):
            try:
                raw = cont.logs(tail=lines)
            except NotFound:
                return []
        return raw.decode("utf-8", errors="replace").splitlines()
