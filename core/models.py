"""Models for swarm services, snapshots and maintenance workflow results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

SNAPSHOT_FORMAT_VERSION = 1

# Per-node cap that Docker treats as effectively unlimited for a global service.
GLOBAL_CAP_UNRESTRICTED = 1_000_000


class ServiceMode(str, Enum):
    """Scheduling mode of a swarm service."""

    REPLICATED = "replicated"
    GLOBAL = "global"


class Category(str, Enum):
    """Tier used to order shutdown and restore."""

    APP = "app"
    DATABASE = "db"
    INGRESS = "ingress"
    ONESHOT = "oneshot"


class MaintenanceState(str, Enum):
    """Persisted maintenance state, derived from the active snapshot."""

    IDLE = "idle"
    ACTIVE = "active"


class MaintenancePhase(str, Enum):
    """In-process phase of the maintenance state machine."""

    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    SCALING_DOWN = "scaling_down"
    MAINTENANCE_ACTIVE = "maintenance_active"
    RESTORING = "restoring"


class ConvergenceStatus(str, Enum):
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ServiceDescriptor:
    """A swarm service as captured for maintenance."""

    name: str
    mode: ServiceMode
    desired_replicas: int
    image: str
    category: Category | None = None

    @property
    def is_global(self) -> bool:
        return self.mode is ServiceMode.GLOBAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mode": self.mode.value,
            "category": self.category.value if self.category else None,
            "desired_replicas": self.desired_replicas,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ServiceDescriptor":
        category = payload.get("category")
        return cls(
            name=str(payload["name"]),
            mode=ServiceMode(payload["mode"]),
            desired_replicas=max(0, int(payload.get("desired_replicas", 0))),
            image=str(payload.get("image", "")),
            category=Category(category) if category else None,
        )


@dataclass(frozen=True)
class SnapshotMetadata:
    """Header recorded alongside the captured services."""

    created_at: str
    hostname: str
    node_count: int
    category_counts: Mapping[str, int] = field(default_factory=dict)
    total_services: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at,
            "hostname": self.hostname,
            "node_count": self.node_count,
            "category_counts": dict(self.category_counts),
            "total_services": self.total_services,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SnapshotMetadata":
        counts = payload.get("category_counts") or {}
        return cls(
            created_at=str(payload["created_at"]),
            hostname=str(payload.get("hostname", "")),
            node_count=int(payload.get("node_count", 0)),
            category_counts={str(k): int(v) for k, v in counts.items()},
            total_services=int(payload.get("total_services", 0)),
        )


@dataclass(frozen=True)
class Snapshot:
    """Pre-maintenance service state used to drive restoration."""

    entries: tuple[ServiceDescriptor, ...]
    metadata: SnapshotMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_FORMAT_VERSION,
            "metadata": self.metadata.to_dict(),
            "services": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Snapshot":
        version = int(payload.get("version", SNAPSHOT_FORMAT_VERSION))
        if version != SNAPSHOT_FORMAT_VERSION:
            raise ValueError(f"unsupported snapshot version {version}")
        entries = tuple(ServiceDescriptor.from_dict(item) for item in payload["services"])
        return cls(entries=entries, metadata=SnapshotMetadata.from_dict(payload["metadata"]))


@dataclass(frozen=True)
class ArchivedSnapshot:
    """A snapshot moved to the append-only archive."""

    path: Path
    snapshot: Snapshot


@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of waiting for services to reach their desired replicas."""

    status: ConvergenceStatus
    elapsed_s: float
    pending: Mapping[str, tuple[int, int]] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return self.status is ConvergenceStatus.CONVERGED


@dataclass(frozen=True)
class PlannedAction:
    """One scaling call a sequencer intends to issue."""

    tier: str
    service: str
    action: str
    value: int

    def describe(self) -> str:
        if self.action == "cap":
            return f"[{self.tier}] {self.service}: max replicas per node → {self.value}"
        return f"[{self.tier}] {self.service}: scale → {self.value}"


@dataclass
class SequenceReport:
    """Aggregated outcome of a shutdown or restore sequence."""

    issued: list[PlannedAction] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    convergence: dict[str, ConvergenceResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def timed_out_tiers(self) -> list[str]:
        return [tier for tier, result in self.convergence.items() if not result.converged]
