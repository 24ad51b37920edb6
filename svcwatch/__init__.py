"""Service watchdog (svcwatch).

Single-service supervisor for a containerized, GPU-backed network service:
 - health probing (container state, TCP port, runtime health check)
 - self-healing (stop, remove and recreate the container)
 - a cooperative supervision loop with interruptible sleeps
 - systemd installation so the watchdog itself survives crashes and reboots

The implementation is intentionally small so it can be audited and explained.
"""

__version__ = "0.1.0"
