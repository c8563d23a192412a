"""Error taxonomy for maintenance workflows."""

from __future__ import annotations


class MaintenanceError(Exception):
    """Base class for errors that abort a maintenance command."""

    exit_code = 1


class PreconditionError(MaintenanceError):
    """Orchestrator missing, swarm inactive, or node is not a manager."""


class ConflictError(MaintenanceError):
    """An active snapshot already exists and overwrite was not requested."""


class NotFoundError(MaintenanceError):
    """No active snapshot exists."""


class SnapshotFormatError(MaintenanceError):
    """A persisted snapshot document could not be read or parsed."""


class OperatorAbortError(MaintenanceError):
    """The operator declined a confirmation prompt."""


class ConvergenceTimeoutError(MaintenanceError):
    """Services did not reach their desired replica counts in time."""

    def __init__(self, message: str, pending: dict[str, tuple[int, int]] | None = None) -> None:
        super().__init__(message)
        self.pending = dict(pending or {})


class ExecutionError(MaintenanceError):
    """A single orchestrator mutation failed."""

    def __init__(self, service_name: str, message: str) -> None:
        super().__init__(f"{service_name}: {message}")
        self.service_name = service_name
        self.reason = message
