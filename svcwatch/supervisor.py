from __future__ import annotations

import logging
from enum import Enum
from threading import Event

from .alerts import Alerter
from .health import HealthProber
from .models import CompositeStatus, RecoveryOutcome, ServiceDescriptor, utc_now
from .recovery import RecoveryController
from .runtime import WatchdogState


log = logging.getLogger(__name__)


class LoopState(str, Enum):
    CHECKING = "checking"
    RECOVERING = "recovering"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class Supervisor:
    """Keeps one service alive: check, recover if needed, sleep, repeat.

    Single-threaded; exactly one probe or recovery is outstanding at a time.
    ``stop()`` may be called from a signal handler or another thread.
    """

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        prober: HealthProber,
        controller: RecoveryController,
        state: WatchdogState | None = None,
        alerter: Alerter | None = None,
        stop_event: Event | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.prober = prober
        self.controller = controller
        self.state = state or WatchdogState()
        self.alerter = alerter
        self._stop = stop_event or controller.cancel
        # The controller must see the same cancellation as the loop.
        controller.cancel = self._stop
        self.loop_state = LoopState.STOPPED

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        d = self.descriptor
        log.info("Starting health monitoring of %s (every %ss)", d.name, d.check_interval_s)
        self.loop_state = LoopState.CHECKING
        while self.loop_state is not LoopState.STOPPED:
            try:
                self.loop_state = self.step(self.loop_state)
            except Exception as e:
                log.error("Watchdog step %s failed: %s: %s", self.loop_state.value, type(e).__name__, e)
                self.loop_state = LoopState.SLEEPING
        log.info("Health monitoring of %s stopped (%s)", d.name, self.state.summary())

    def step(self, state: LoopState) -> LoopState:
        if state is LoopState.CHECKING:
            return self._check()
        if state is LoopState.RECOVERING:
            return self._recover()
        if state is LoopState.SLEEPING:
            return self._sleep()
        return LoopState.STOPPED

    def _check(self) -> LoopState:
        if self.stopping:
            return LoopState.STOPPED
        d = self.descriptor
        signal = self.prober.probe(d)
        status = signal.status
        prev = self.state.mark_status(status)
        if status is CompositeStatus.HEALTHY:
            if prev is not None and prev is not CompositeStatus.HEALTHY:
                log.info("Service %s is healthy again (was %s)", d.name, prev.value)
            log.info("Service %s health check passed", d.name)
            return LoopState.SLEEPING
        if not signal.container_running:
            log.error("Container %s is not running: %s", d.name, signal.details.get("container", ""))
        if not signal.port_reachable:
            log.error("Port %s of %s is not accessible: %s", d.port, d.name, signal.details.get("port", ""))
        if signal.container_running and status is CompositeStatus.DEGRADED:
            log.error("Container %s runtime health: %s", d.name, signal.details.get("runtime_health", ""))
        log.warning("Service %s is %s - attempting restart...", d.name, status.value)
        return LoopState.RECOVERING

    def _recover(self) -> LoopState:
        # A shutdown must never start a destructive recreate.
        if self.stopping:
            return LoopState.STOPPED
        d = self.descriptor
        attempt = self.controller.recover(d)
        if attempt.outcome is RecoveryOutcome.CANCELLED:
            return LoopState.STOPPED

        failures = self.state.record(attempt)
        if attempt.ok:
            log.info("Service %s restored successfully", d.name)
            self._alert(f"Service {d.name} was restarted at {utc_now()}", f"Readiness reached after {attempt.attempts} probe(s).")
            return LoopState.SLEEPING

        log.critical("Failed to restart service %s (%s): %s", d.name, attempt.outcome.value, attempt.error)
        self._alert(
            f"CRITICAL: Service {d.name} restart failed at {utc_now()}",
            f"Outcome: {attempt.outcome.value}\nDetail: {attempt.error}\nConsecutive failures: {failures}",
            critical=True,
        )
        if self.state.alarm_due():
            log.critical("Service %s failed %d consecutive recoveries", d.name, failures)
            self._alert(
                f"CRITICAL: {d.name} failed {failures} consecutive recoveries",
                "The watchdog keeps retrying; manual intervention is likely required.",
                critical=True,
            )
        return LoopState.SLEEPING

    def _sleep(self) -> LoopState:
        delay = self.state.next_delay(self.descriptor.check_interval_s)
        if delay != self.descriptor.check_interval_s:
            log.warning("Backing off: next check of %s in %ss", self.descriptor.name, delay)
        if self._stop.wait(delay):
            return LoopState.STOPPED
        return LoopState.CHECKING

    def _alert(self, subject: str, body: str, critical: bool = False) -> None:
        if self.alerter is None:
            return
        try:
            self.alerter.notify(self.descriptor.name, subject, body, critical=critical)
        except Exception as e:
            log.warning("Alert delivery failed: %s: %s", type(e).__name__, e)
