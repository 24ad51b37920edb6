from __future__ import annotations

import logging
from threading import Event

from .docker_ops import ContainerRuntime
from .errors import ContainerRuntimeError, ProbeTimeout, RecoveryRuntimeError, RecoveryTimedOut, RuntimeUnavailable
from .health import HealthProber
from .models import CompositeStatus, HealthSignal, RecoveryAttempt, RecoveryOutcome, ServiceDescriptor, utc_now


log = logging.getLogger(__name__)

_RUNTIME_ERRORS = (RuntimeUnavailable, ContainerRuntimeError, ProbeTimeout)


class RecoveryController:
    """Stop, remove and recreate the service container, then wait for readiness.

    Callers must not overlap ``recover`` calls for the same service; the
    supervision loop guarantees that by being single-threaded.
    """

    def __init__(self, runtime: ContainerRuntime, prober: HealthProber, cancel: Event | None = None) -> None:
        self.runtime = runtime
        self.prober = prober
        self.cancel = cancel or Event()

    def recover(self, descriptor: ServiceDescriptor) -> RecoveryAttempt:
        d = descriptor
        started = utc_now()
        if self.cancel.is_set():
            log.info("Recovery of %s skipped: shutdown requested", d.name)
            return RecoveryAttempt(RecoveryOutcome.CANCELLED, 0, started, utc_now())
        log.info("Starting/restarting service container %s...", d.name)

        try:
            self._recreate(d)
        except _RUNTIME_ERRORS as e:
            err = RecoveryRuntimeError(f"Runtime call failed while recreating {d.name}: {e}")
            err.__cause__ = e
            log.error("%s", err)
            return RecoveryAttempt(RecoveryOutcome.RUNTIME_ERROR, 0, started, utc_now(), error=err)

        log.info("Waiting up to %ss for %s to become ready...", d.readiness_timeout_s, d.name)
        attempts = 0
        signal: HealthSignal | None = None
        while attempts < d.max_attempts:
            attempts += 1
            signal = self.prober.probe(d)
            if signal.status is CompositeStatus.HEALTHY:
                log.info("Service %s is ready and accessible (attempt %d/%d)", d.name, attempts, d.max_attempts)
                return RecoveryAttempt(RecoveryOutcome.SUCCEEDED, attempts, started, utc_now(), last_signal=signal)
            if attempts >= d.max_attempts:
                break
            if self.cancel.wait(d.poll_interval_s):
                log.info("Readiness wait for %s cancelled after %d attempts", d.name, attempts)
                return RecoveryAttempt(RecoveryOutcome.CANCELLED, attempts, started, utc_now(), last_signal=signal)

        err = RecoveryTimedOut(f"Service {d.name} failed to become ready within {d.readiness_timeout_s:g} seconds")
        log.error("%s", err)
        return RecoveryAttempt(RecoveryOutcome.TIMED_OUT, attempts, started, utc_now(), error=err, last_signal=signal)

    def _recreate(self, d: ServiceDescriptor) -> None:
        # stop/remove are no-ops when the container is already stopped or absent.
        info = self.runtime.inspect(d.name)
        if info is not None:
            if info.running:
                log.info("Stopping existing container %s...", d.name)
                self.runtime.stop(d.name, timeout=d.stop_timeout_s)
            log.info("Removing existing container %s...", d.name)
            self.runtime.remove(d.name)

        log.info("Starting new container %s...", d.name)
        ref = self.runtime.run(d)
        log.info("Container %s started successfully (%s)", ref.name, ref.id[:12])
