from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

from .models import ServiceDescriptor


def _env_str(name: str, default: str | None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_name(field_name: str) -> str:
    return f"SVCW_{field_name.upper()}"


# Keyed by the (string) annotations of the Settings fields.
_PARSERS = {
    "str": _env_str,
    "str | None": _env_str,
    "int": _env_int,
    "float": _env_float,
    "bool": _env_bool,
}


@dataclass(frozen=True)
class Settings:
    # Service
    container_name: str = "sp1-gpu"
    image: str = "public.ecr.aws/succinct-labs/moongate:v5.0.0"
    port: int = 3000
    host: str = "localhost"
    gpus: str | None = "all"
    restart_policy: str = "unless-stopped"

    # Timing
    check_interval_s: float = 30.0
    poll_interval_s: float = 2.0
    max_attempts: int = 30
    probe_timeout_s: float = 5.0
    stop_timeout_s: int = 10

    # Logging / install
    log_file: str | None = "/var/log/svcwatch.log"
    log_level: str = "INFO"
    unit_dir: str = "/etc/systemd/system"
    env_dir: str = "/etc/svcwatch"
    log_lines: int = 10

    # Consecutive failure handling; both disabled by default.
    backoff_factor: float = 1.0
    backoff_max_s: float = 0.0
    alarm_after_failures: int = 0

    # Alerting (all optional)
    enable_wall: bool = True
    webhook_url: str | None = None
    enable_email: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    email_from: str | None = None
    email_to: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        d = cls()
        return cls(**{f.name: _PARSERS[f.type](_env_name(f.name), getattr(d, f.name)) for f in fields(cls)})

    def to_env(self) -> dict[str, str]:
        """SVCW_* variables for every setting that differs from the defaults."""
        d = Settings()
        out: dict[str, str] = {}
        for f in fields(self):
            v = getattr(self, f.name)
            if v is None or v == getattr(d, f.name):
                continue
            out[_env_name(f.name)] = ("true" if v else "false") if isinstance(v, bool) else str(v)
        return out

    def descriptor(self, **overrides: Any) -> ServiceDescriptor:
        """Build a validated descriptor; ``None`` overrides fall back to settings."""
        values: dict[str, Any] = {
            "name": self.container_name,
            "image": self.image,
            "port": self.port,
            "host": self.host,
            "gpus": self.gpus,
            "restart_policy": self.restart_policy,
            "check_interval_s": self.check_interval_s,
            "poll_interval_s": self.poll_interval_s,
            "max_attempts": self.max_attempts,
            "probe_timeout_s": self.probe_timeout_s,
            "stop_timeout_s": self.stop_timeout_s,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ServiceDescriptor(**values)
