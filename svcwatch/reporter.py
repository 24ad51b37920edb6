from __future__ import annotations

from dataclasses import dataclass, field

from .docker_ops import ContainerInfo, ContainerRuntime
from .errors import ContainerRuntimeError, ProbeTimeout, RuntimeUnavailable
from .health import HealthProber
from .models import CompositeStatus, HealthSignal, ServiceDescriptor

_QUERY_ERRORS = (RuntimeUnavailable, ContainerRuntimeError, ProbeTimeout)


@dataclass
class Diagnostics:
    container_exists: bool
    container_state: str
    ports: str
    port_detail: str
    runtime_health: str
    log_tail: list[str] = field(default_factory=list)


@dataclass
class StatusReport:
    descriptor: ServiceDescriptor
    status: CompositeStatus
    signal: HealthSignal
    diagnostics: Diagnostics


def status(
    descriptor: ServiceDescriptor,
    runtime: ContainerRuntime,
    prober: HealthProber | None = None,
    log_lines: int = 10,
) -> StatusReport:
    """One-shot, read-only status; runs its own probe instead of sharing loop state."""
    prober = prober or HealthProber(runtime)
    signal = prober.probe(descriptor)

    info: ContainerInfo | None = None
    state = "missing"
    try:
        info = runtime.inspect(descriptor.name)
        if info is not None:
            state = info.status
    except _QUERY_ERRORS as e:
        state = f"unknown ({e})"

    tail: list[str] = []
    if info is not None:
        try:
            tail = runtime.logs_tail(descriptor.name, log_lines)
        except _QUERY_ERRORS as e:
            tail = [f"<logs unavailable: {e}>"]

    diag = Diagnostics(
        container_exists=info is not None,
        container_state=state,
        ports=info.ports if info is not None else "",
        port_detail=signal.details.get("port", ""),
        runtime_health=signal.details.get("runtime_health", signal.runtime_health.value),
        log_tail=tail,
    )
    return StatusReport(descriptor=descriptor, status=signal.status, signal=signal, diagnostics=diag)


def _mark(ok: bool) -> str:
    return "OK  " if ok else "FAIL"


def render_table(report: StatusReport) -> str:
    d = report.descriptor
    s = report.signal
    g = report.diagnostics
    rows = [
        ("Container", _mark(s.container_running), f"{d.name} ({g.container_state})"),
        ("Port", _mark(s.port_reachable), f"{d.host}:{d.port} - {g.port_detail}"),
        ("Runtime health", _mark(s.runtime_health.value == "healthy"), f"{s.runtime_health.value} - {g.runtime_health}"),
    ]
    width = max(len(r[0]) for r in rows)

    lines = [f"=== {d.name} status: {report.status.value.upper()} ===", ""]
    lines += [f"{name.ljust(width)}  [{mark}]  {detail}" for name, mark, detail in rows]
    lines += ["", "Container details:"]
    if g.container_exists:
        lines.append(f"  image={d.image} state={g.container_state} ports={g.ports or '-'}")
    else:
        lines.append("  No container found")
    lines += ["", "Recent logs:"]
    lines += [f"  {x}" for x in g.log_tail] or ["  No logs available"]
    return "\n".join(lines)
