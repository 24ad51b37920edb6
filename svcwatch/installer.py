from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .errors import InstallError, InstallPermissionError
from .models import ServiceDescriptor


log = logging.getLogger(__name__)

Runner = Callable[[list[str]], "subprocess.CompletedProcess[str]"]

UNIT_TEMPLATE = """\
[Unit]
Description=svcwatch health monitor for {name}
After=docker.service
Requires=docker.service

[Service]
Type=simple
User=root
WorkingDirectory={working_dir}
{environment}ExecStart={exec_start}
Restart=always
RestartSec=10
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
"""

_DENIED_MARKERS = ("access denied", "interactive authentication required", "permission denied")


@dataclass(frozen=True)
class InstallResult:
    unit_name: str
    unit_path: Path
    active: bool
    env_path: Path | None = None


def _run_capture(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=60)  # nosec: B603


def unit_name_for(descriptor: ServiceDescriptor) -> str:
    return f"{descriptor.name}-monitor.service"


def monitor_command(
    descriptor: ServiceDescriptor,
    log_file: str | None = None,
    log_level: str | None = None,
    python: str | None = None,
) -> list[str]:
    """Full command line the init system uses to run the supervision loop."""
    d = descriptor
    cmd = [python or sys.executable, "-m", "svcwatch"]
    if log_file:
        cmd += ["--log-file", log_file]
    if log_level:
        cmd += ["--log-level", log_level]
    cmd += [
        "monitor",
        "--name", d.name,
        "--image", d.image,
        "--port", str(d.port),
        "--container-port", str(d.target_port),
        "--host", d.host,
        "--gpus", d.gpus or "none",
        "--restart-policy", d.restart_policy,
        "--check-interval", f"{d.check_interval_s:g}",
        "--poll-interval", f"{d.poll_interval_s:g}",
        "--max-attempts", str(d.max_attempts),
        "--probe-timeout", f"{d.probe_timeout_s:g}",
    ]
    return cmd


def render_unit(
    descriptor: ServiceDescriptor,
    command: list[str],
    working_dir: str | Path,
    env_file: str | Path | None = None,
) -> str:
    environment = f"EnvironmentFile=-{env_file}\n" if env_file else ""
    return UNIT_TEMPLATE.format(
        name=descriptor.name,
        working_dir=working_dir,
        environment=environment,
        exec_start=shlex.join(command),
    )


def render_env_file(environment: dict[str, str]) -> str:
    """systemd EnvironmentFile body; values are double-quoted."""
    lines = ["# Written by svcwatch install; re-run install to change."]
    for key in sorted(environment):
        value = environment[key].replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'{key}="{value}"')
    return "\n".join(lines) + "\n"


def _write_file(path: Path, text: str, mode: int = 0o644) -> None:
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(text, encoding="utf-8")
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except PermissionError as e:
        raise InstallPermissionError(f"Cannot write {path}: {e}. Run as root (sudo).") from e


def _systemctl(runner: Runner, *args: str) -> subprocess.CompletedProcess[str]:
    cmd = ["systemctl", *args]
    try:
        cp = runner(cmd)
    except FileNotFoundError as e:
        raise InstallError("systemctl not found; a systemd host is required") from e
    if cp.returncode != 0 and args[0] != "is-active":
        msg = (cp.stderr or cp.stdout or "").strip()
        if any(m in msg.lower() for m in _DENIED_MARKERS):
            raise InstallPermissionError(f"{' '.join(cmd)}: {msg}")
        raise InstallError(f"{' '.join(cmd)} failed ({cp.returncode}): {msg}")
    return cp


def install(
    descriptor: ServiceDescriptor,
    unit_dir: str | Path = "/etc/systemd/system",
    command: list[str] | None = None,
    working_dir: str | Path | None = None,
    runner: Runner = _run_capture,
    confirm_attempts: int = 5,
    confirm_interval_s: float = 1.0,
    environment: dict[str, str] | None = None,
    env_dir: str | Path = "/etc/svcwatch",
) -> InstallResult:
    """Persist the monitor as a systemd unit, enable it on boot and start it.

    With ``environment`` (the SVCW_* settings of the installing shell) an
    EnvironmentFile is written next to the unit so the monitor sees the same
    alerting and backoff configuration. It may hold SMTP credentials, hence 0600.

    Re-running overwrites the existing unit. Returns once systemd reports the
    unit active; the service itself may still be recovering at that point.
    """
    unit = unit_name_for(descriptor)
    path = Path(unit_dir) / unit
    env_path = None if environment is None else Path(env_dir) / f"{descriptor.name}-monitor.env"
    text = render_unit(descriptor, command or monitor_command(descriptor), working_dir or os.getcwd(), env_path)

    log.info("Installing monitoring service %s...", unit)
    if env_path is not None:
        # Always rewritten so a re-install drops settings that went back to default.
        _write_file(env_path, render_env_file(environment), mode=0o600)
    _write_file(path, text)

    _systemctl(runner, "daemon-reload")
    _systemctl(runner, "enable", unit)
    # restart rather than start so a re-install picks up the new ExecStart.
    _systemctl(runner, "restart", unit)

    for i in range(max(1, confirm_attempts)):
        cp = _systemctl(runner, "is-active", unit)
        if cp.returncode == 0 and cp.stdout.strip() == "active":
            log.info("Monitoring service %s installed and started", unit)
            log.info("Check status: systemctl status %s", unit)
            log.info("View logs: journalctl -u %s -f", unit)
            return InstallResult(unit_name=unit, unit_path=path, active=True, env_path=env_path)
        if i + 1 < confirm_attempts:
            time.sleep(confirm_interval_s)

    raise InstallError(f"{unit} did not become active (last state: {cp.stdout.strip() or 'unknown'})")
