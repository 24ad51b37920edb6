from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]{0,127}$")
GPU_IDS_RE = re.compile(r"^\d+(,\d+)*$")
# Floor for docker calls made while recreating; an implicit image pull can be slow.
RECOVERY_CALL_TIMEOUT_MIN_S = 60.0


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ServiceDescriptor(BaseModel):
    """Everything the watchdog needs to know about the one service it keeps alive."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Container name")
    image: str = Field(..., min_length=1, description="Docker image (name:tag)")
    port: int = Field(..., ge=1, le=65535, description="Host port the service is published on")
    container_port: int | None = Field(None, ge=1, le=65535, description="Port inside the container (defaults to port)")
    host: str = Field("localhost", description="Host used for the TCP reachability probe")
    gpus: str | None = Field("all", description="'all', comma separated device ids, or None")
    restart_policy: str = Field("unless-stopped")
    environment: dict[str, str] = Field(default_factory=dict)

    probe_timeout_s: float = Field(5.0, gt=0, le=60)
    poll_interval_s: float = Field(2.0, ge=0, le=600)
    max_attempts: int = Field(30, ge=1, le=10_000)
    check_interval_s: float = Field(30.0, gt=0, le=86_400)
    stop_timeout_s: int = Field(10, ge=0, le=600)

    # Containers built without a HEALTHCHECK report no health at all.
    assume_healthy_without_healthcheck: bool = True

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if not CONTAINER_NAME_RE.match(v):
            raise ValueError("Invalid container name. Use letters, digits and _.- starting with a letter or digit.")
        return v

    @field_validator("gpus")
    @classmethod
    def _check_gpus(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if v in {"", "none"}:
            return None
        if v != "all" and not GPU_IDS_RE.match(v):
            raise ValueError("gpus must be 'all', 'none' or a comma separated list of device ids.")
        return v

    @property
    def target_port(self) -> int:
        return self.container_port or self.port

    @property
    def readiness_timeout_s(self) -> float:
        return self.max_attempts * self.poll_interval_s

    @property
    def recovery_call_timeout_s(self) -> float:
        """HTTP budget for runtime calls made while recreating (create, start, pull)."""
        return max(self.probe_timeout_s, self.readiness_timeout_s, RECOVERY_CALL_TIMEOUT_MIN_S)


class RuntimeHealth(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class CompositeStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass(frozen=True)
class HealthSignal:
    container_running: bool
    port_reachable: bool
    runtime_health: RuntimeHealth
    details: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def status(self) -> CompositeStatus:
        return composite_status(self)


def composite_status(signal: HealthSignal) -> CompositeStatus:
    if not signal.container_running:
        return CompositeStatus.DOWN
    if signal.port_reachable and signal.runtime_health is RuntimeHealth.HEALTHY:
        return CompositeStatus.HEALTHY
    return CompositeStatus.DEGRADED


class RecoveryOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    RUNTIME_ERROR = "runtime_error"
    CANCELLED = "cancelled"


@dataclass
class RecoveryAttempt:
    outcome: RecoveryOutcome
    attempts: int = 0
    started_at: str = field(default_factory=utc_now)
    finished_at: str = field(default_factory=utc_now)
    error: Exception | None = None
    last_signal: HealthSignal | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is RecoveryOutcome.SUCCEEDED
