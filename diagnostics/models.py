"""Result types reported by maintenance readiness checks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DiagnosticStatus(str, Enum):
    """Outcome of one readiness check, ordered from healthy to blocking."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class DiagnosticResult:
    """One subsystem's readiness for a maintenance window.

    A WARN never blocks ``enter``; a FAIL means the workflow would abort.
    """

    name: str
    status: DiagnosticStatus
    details: str

    @property
    def failed(self) -> bool:
        return self.status is DiagnosticStatus.FAIL

    @property
    def line(self) -> str:
        return f"[{self.status.value}] {self.name}: {self.details}"

    @classmethod
    def from_exception(cls, name: str, exc: BaseException) -> "DiagnosticResult":
        return cls(name=name, status=DiagnosticStatus.FAIL, details=f"Probe raised exception: {exc}")
