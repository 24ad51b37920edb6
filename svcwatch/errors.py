from __future__ import annotations


class WatchdogError(Exception):
    pass


class ProbeTimeout(WatchdogError):
    """A single health sub-check exceeded its time budget."""


class RuntimeUnavailable(WatchdogError):
    """The container runtime (docker daemon) cannot be reached."""


class ContainerRuntimeError(WatchdogError):
    """The runtime was reachable but rejected an operation."""


class RecoveryTimedOut(WatchdogError):
    pass


class RecoveryRuntimeError(WatchdogError):
    pass


class InstallError(WatchdogError):
    pass


class InstallPermissionError(InstallError, PermissionError):
    pass
