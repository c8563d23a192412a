"""Cluster query interface and an in-memory cluster for offline use."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from core.errors import ExecutionError, PreconditionError
from core.models import GLOBAL_CAP_UNRESTRICTED, ServiceDescriptor, ServiceMode


class ClusterQuery(Protocol):
    """Read and mutate operations consumed from the orchestrator.

    Mutations only submit the new desired state; the orchestrator converges
    asynchronously and callers poll ``current_replicas`` to observe it.
    """

    def ensure_ready(self) -> None:
        """Raise PreconditionError unless this node manages an active swarm."""

    def list_services(self) -> list[ServiceDescriptor]:
        """Return every service with its mode, desired replicas and image."""

    def node_count(self) -> int:
        """Return the number of nodes in the swarm."""

    def node_availability(self) -> str:
        """Return the local node availability (active, pause or drain)."""

    def scale(self, service_name: str, replicas: int) -> None:
        """Set the replica count of a replicated service."""

    def set_global_cap(self, service_name: str, max_per_node: int) -> None:
        """Set the per-node replica maximum of a global service."""

    def current_replicas(self, service_name: str) -> tuple[int, int]:
        """Return ``(current, desired)`` running task counts."""


@dataclass
class FakeService:
    """Mutable state of one service in the in-memory cluster."""

    name: str
    mode: ServiceMode
    image: str
    desired: int = 1
    current: int | None = None
    max_per_node: int = GLOBAL_CAP_UNRESTRICTED

    def __post_init__(self) -> None:
        if self.current is None:
            self.current = self.desired


@dataclass
class FakeClusterQuery:
    """In-memory swarm used by offline diagnostics and tests.

    Every mutation is appended to ``calls`` as ``(operation, service, value)``
    in the order it was issued.
    """

    services: dict[str, FakeService] = field(default_factory=dict)
    nodes: int = 1
    availability: str = "active"
    ready: bool = True
    not_ready_reason: str = "Docker Swarm is not active."
    stuck: set[str] = field(default_factory=set)
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, str, int]] = field(default_factory=list)

    def add_service(
        self,
        name: str,
        image: str,
        replicas: int = 1,
        mode: ServiceMode = ServiceMode.REPLICATED,
    ) -> FakeService:
        desired = replicas if mode is ServiceMode.REPLICATED else self.nodes
        service = FakeService(name=name, mode=mode, image=image, desired=desired)
        self.services[name] = service
        return service

    def ensure_ready(self) -> None:
        if not self.ready:
            raise PreconditionError(self.not_ready_reason)

    def list_services(self) -> list[ServiceDescriptor]:
        self.ensure_ready()
        return [
            ServiceDescriptor(
                name=service.name,
                mode=service.mode,
                desired_replicas=service.desired if service.mode is ServiceMode.REPLICATED else 0,
                image=service.image,
            )
            for service in self.services.values()
        ]

    def node_count(self) -> int:
        return self.nodes

    def node_availability(self) -> str:
        return self.availability

    def scale(self, service_name: str, replicas: int) -> None:
        service = self._get(service_name)
        if service.mode is not ServiceMode.REPLICATED:
            raise ExecutionError(service_name, "cannot scale a global service")
        self.calls.append(("scale", service_name, replicas))
        service.desired = replicas
        if service_name not in self.stuck:
            service.current = replicas

    def set_global_cap(self, service_name: str, max_per_node: int) -> None:
        service = self._get(service_name)
        if service.mode is not ServiceMode.GLOBAL:
            raise ExecutionError(service_name, "per-node cap applies to global services only")
        self.calls.append(("cap", service_name, max_per_node))
        service.max_per_node = max_per_node
        service.desired = min(self.nodes, max_per_node * self.nodes)
        if service_name not in self.stuck:
            service.current = service.desired

    def current_replicas(self, service_name: str) -> tuple[int, int]:
        service = self._get(service_name)
        return int(service.current or 0), service.desired

    def calls_for(self, service_name: str) -> list[tuple[str, str, int]]:
        return [call for call in self.calls if call[1] == service_name]

    def _get(self, service_name: str) -> FakeService:
        if service_name in self.failing:
            raise ExecutionError(service_name, "simulated orchestrator failure")
        service = self.services.get(service_name)
        if service is None:
            raise ExecutionError(service_name, "service not found")
        return service
