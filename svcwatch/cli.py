from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from threading import Event

from pydantic import ValidationError

from .alerts import Alerter
from .docker_ops import ContainerRuntime, DockerRuntime
from .errors import InstallError, InstallPermissionError
from .health import HealthProber
from .installer import install, monitor_command
from .logs import setup_logging
from .models import CompositeStatus, ServiceDescriptor
from .recovery import RecoveryController
from .reporter import render_table, status
from .runtime import WatchdogState
from .settings import Settings
from .supervisor import Supervisor


log = logging.getLogger(__name__)


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def build_runtime(descriptor: ServiceDescriptor, timeout: float | None = None) -> ContainerRuntime:
    return DockerRuntime(timeout=timeout or descriptor.probe_timeout_s)


def build_controller(d: ServiceDescriptor, prober: HealthProber, cancel: Event | None = None) -> RecoveryController:
    # Probes keep the short budget; create/start of a GPU container may take longer.
    return RecoveryController(build_runtime(d, timeout=d.recovery_call_timeout_s), prober, cancel)


def _service_options(settings: Settings) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    g = p.add_argument_group("service")
    g.add_argument("--name", help=f"Container name (default: {settings.container_name})")
    g.add_argument("--image", help=f"Image reference (default: {settings.image})")
    g.add_argument("--port", type=int, help=f"Published host port (default: {settings.port})")
    g.add_argument("--container-port", type=int, help="Port inside the container (default: same as --port)")
    g.add_argument("--host", help=f"Host for the TCP probe (default: {settings.host})")
    g.add_argument("--gpus", help="'all', 'none' or device ids like '0,1' (default: %s)" % (settings.gpus or "none"))
    g.add_argument("--no-gpus", action="store_true", help="Disable GPU passthrough")
    g.add_argument("--restart-policy", help=f"Docker restart policy (default: {settings.restart_policy})")
    g.add_argument("--check-interval", type=float, help=f"Seconds between checks (default: {settings.check_interval_s:g})")
    g.add_argument("--poll-interval", type=float, help=f"Seconds between readiness polls (default: {settings.poll_interval_s:g})")
    g.add_argument("--max-attempts", type=int, help=f"Readiness polls per recovery (default: {settings.max_attempts})")
    g.add_argument("--probe-timeout", type=float, help=f"Per-check timeout in seconds (default: {settings.probe_timeout_s:g})")
    return p


def _descriptor(args: argparse.Namespace, settings: Settings) -> ServiceDescriptor:
    return settings.descriptor(
        name=args.name,
        image=args.image,
        port=args.port,
        container_port=args.container_port,
        host=args.host,
        gpus="none" if args.no_gpus else args.gpus,
        restart_policy=args.restart_policy,
        check_interval_s=args.check_interval,
        poll_interval_s=args.poll_interval,
        max_attempts=args.max_attempts,
        probe_timeout_s=args.probe_timeout,
    )


def cmd_check(args: argparse.Namespace, d: ServiceDescriptor, settings: Settings) -> int:
    signal_ = HealthProber(build_runtime(d)).probe(d)
    st = signal_.status
    if args.json:
        _print(
            {
                "service": d.name,
                "status": st.value,
                "container_running": signal_.container_running,
                "port_reachable": signal_.port_reachable,
                "runtime_health": signal_.runtime_health.value,
                "details": signal_.details,
            }
        )
    else:
        print(f"{d.name}: {st.value.upper()}")
        for k, v in signal_.details.items():
            print(f"  {k}: {v}")
    return 0 if st is CompositeStatus.HEALTHY else 1


def cmd_status(args: argparse.Namespace, d: ServiceDescriptor, settings: Settings) -> int:
    report = status(d, build_runtime(d), log_lines=args.lines or settings.log_lines)
    print(render_table(report))
    return 0


def cmd_start(args: argparse.Namespace, d: ServiceDescriptor, settings: Settings) -> int:
    attempt = build_controller(d, HealthProber(build_runtime(d))).recover(d)
    print(f"{d.name}: {attempt.outcome.value} after {attempt.attempts} readiness probe(s)")
    return 0 if attempt.ok else 1


def cmd_monitor(args: argparse.Namespace, d: ServiceDescriptor, settings: Settings) -> int:
    stop = Event()
    prober = HealthProber(build_runtime(d))
    supervisor = Supervisor(
        d,
        prober,
        build_controller(d, prober, stop),
        state=WatchdogState(settings.backoff_factor, settings.backoff_max_s, settings.alarm_after_failures),
        alerter=Alerter(settings),
        stop_event=stop,
    )

    def _handle(signum, frame) -> None:
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        supervisor.stop()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)
    supervisor.run()
    return 0


def cmd_install(args: argparse.Namespace, d: ServiceDescriptor, settings: Settings) -> int:
    try:
        result = install(
            d,
            unit_dir=args.unit_dir or settings.unit_dir,
            command=monitor_command(d, log_file=args.log_file, log_level=args.log_level),
            environment=settings.to_env(),
            env_dir=settings.env_dir,
        )
    except InstallPermissionError as e:
        log.error("%s", e)
        return 1
    except InstallError as e:
        log.error("Install failed: %s", e)
        return 1
    print(f"Installed {result.unit_name} at {result.unit_path}")
    return 0


def main(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    settings = settings or Settings.from_env()
    common = _service_options(settings)

    p = argparse.ArgumentParser(prog="svcwatch", description="Health monitor & auto-restart for a containerized GPU service")
    p.add_argument("--log-file", default=settings.log_file, help="Append-only log file ('' to disable)")
    p.add_argument("--log-level", default=settings.log_level)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_check = sub.add_parser("check", parents=[common], help="Run a single health check")
    s_check.add_argument("--json", action="store_true")
    s_check.set_defaults(func=cmd_check)

    s_status = sub.add_parser("status", parents=[common], help="Show service status")
    s_status.add_argument("--lines", type=int, help="Container log lines to show")
    s_status.set_defaults(func=cmd_status)

    s_start = sub.add_parser("start", parents=[common], help="Start/restart the service container")
    s_start.set_defaults(func=cmd_start)

    s_mon = sub.add_parser("monitor", parents=[common], help="Run continuous monitoring (use with systemd)")
    s_mon.set_defaults(func=cmd_monitor)

    s_inst = sub.add_parser("install", parents=[common], help="Install as a systemd service")
    s_inst.add_argument("--unit-dir", help=f"Unit directory (default: {settings.unit_dir})")
    s_inst.set_defaults(func=cmd_install)

    args = p.parse_args(argv)
    setup_logging(args.log_file or None, args.log_level)

    try:
        d = _descriptor(args, settings)
    except ValidationError as e:
        log.error("Invalid service configuration: %s", e)
        return 2
    return args.func(args, d, settings)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
