"""Docker Swarm implementation of the cluster query interface."""

from __future__ import annotations

import copy
import logging
from typing import Any

import docker
from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from core.errors import ExecutionError, PreconditionError
from core.models import ServiceDescriptor, ServiceMode


LOGGER = logging.getLogger(__name__)

# Matches no node, so a global service carrying it runs zero tasks.
STOPPED_CONSTRAINT = "node.id==swarmkeep-maintenance-stopped"

# Transport failures surface from requests rather than as DockerException.
_CLIENT_ERRORS = (DockerException, RequestException)


def _strip_digest(image: str) -> str:
    """Drop the ``@sha256:...`` suffix the way ``docker service ls`` does."""

    return image.split("@", 1)[0]


class DockerClusterQuery:
    """Query and scale swarm services through the Docker Engine API."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except _CLIENT_ERRORS as exc:
                raise PreconditionError(f"Docker is not reachable: {exc}") from exc
        return self._client

    def ensure_ready(self) -> None:
        swarm = self._swarm_info()
        if swarm.get("LocalNodeState") != "active":
            raise PreconditionError("Docker Swarm is not active.")
        if not swarm.get("ControlAvailable"):
            raise PreconditionError("This node is not a Swarm manager.")

    def list_services(self) -> list[ServiceDescriptor]:
        self.ensure_ready()
        try:
            services = self.client.services.list()
        except _CLIENT_ERRORS as exc:
            raise PreconditionError(f"Unable to list swarm services: {exc}") from exc

        descriptors: list[ServiceDescriptor] = []
        for service in services:
            mode = service.attrs.get("Spec", {}).get("Mode", {})
            if "ReplicatedJob" in mode or "GlobalJob" in mode:
                LOGGER.info("Skipping swarm job %s (runs to completion)", service.name)
                continue
            descriptors.append(self._describe(service.attrs))
        return sorted(descriptors, key=lambda descriptor: descriptor.name)

    def node_count(self) -> int:
        try:
            return len(self.client.nodes.list())
        except _CLIENT_ERRORS as exc:
            raise PreconditionError(f"Unable to list swarm nodes: {exc}") from exc

    def node_availability(self) -> str:
        node_id = self._swarm_info().get("NodeID")
        if not node_id:
            return "unknown"
        try:
            node = self.client.nodes.get(node_id)
        except _CLIENT_ERRORS as exc:
            LOGGER.warning("Unable to inspect local node %s: %s", node_id, exc)
            return "unknown"
        return str(node.attrs.get("Spec", {}).get("Availability", "unknown"))

    def scale(self, service_name: str, replicas: int) -> None:
        service = self._get_service(service_name)
        if "Replicated" not in service.attrs["Spec"]["Mode"]:
            raise ExecutionError(service_name, "cannot scale a global service")
        try:
            service.scale(int(replicas))
        except _CLIENT_ERRORS as exc:
            raise ExecutionError(service_name, f"scale to {replicas} failed: {exc}") from exc

    def set_global_cap(self, service_name: str, max_per_node: int) -> None:
        """Stop (cap 0) or release (cap > 0) a global service.

        Docker reads ``MaxReplicas=0`` as "no limit", so a zero cap is applied
        as a placement constraint no node satisfies. Any positive cap removes
        that constraint; a global service runs at most one task per node anyway.
        """

        service = self._get_service(service_name)
        spec = service.attrs["Spec"]
        if "Global" not in spec["Mode"]:
            raise ExecutionError(service_name, "per-node cap applies to global services only")

        task_template = copy.deepcopy(spec.get("TaskTemplate") or {})
        placement = dict(task_template.get("Placement") or {})
        constraints = [c for c in placement.get("Constraints") or [] if c != STOPPED_CONSTRAINT]
        if int(max_per_node) <= 0:
            constraints.append(STOPPED_CONSTRAINT)
        if constraints:
            placement["Constraints"] = constraints
        else:
            placement.pop("Constraints", None)
        task_template["Placement"] = placement
        try:
            self.client.api.update_service(
                service.id,
                service.version,
                task_template=task_template,
                fetch_current_spec=True,
            )
        except _CLIENT_ERRORS as exc:
            raise ExecutionError(
                service_name, f"setting the per-node cap to {max_per_node} failed: {exc}"
            ) from exc

    def current_replicas(self, service_name: str) -> tuple[int, int]:
        service = self._get_service(service_name)
        try:
            tasks = service.tasks(filters={"desired-state": "running"})
        except _CLIENT_ERRORS as exc:
            raise ExecutionError(service_name, f"listing tasks failed: {exc}") from exc

        running = sum(1 for task in tasks if task.get("Status", {}).get("State") == "running")
        mode = service.attrs["Spec"]["Mode"]
        if "Replicated" in mode:
            desired = int(mode["Replicated"].get("Replicas", 0))
        else:
            desired = len(tasks)
        return running, desired

    def _swarm_info(self) -> dict[str, Any]:
        try:
            info = self.client.info()
        except _CLIENT_ERRORS as exc:
            raise PreconditionError(f"Docker is not reachable: {exc}") from exc
        return info.get("Swarm") or {}

    def _get_service(self, service_name: str):
        try:
            return self.client.services.get(service_name)
        except NotFound as exc:
            raise ExecutionError(service_name, "service not found") from exc
        except APIError as exc:
            raise ExecutionError(service_name, f"inspect failed: {exc}") from exc
        except _CLIENT_ERRORS as exc:
            raise PreconditionError(f"Docker is not reachable: {exc}") from exc

    @staticmethod
    def _describe(attrs: dict[str, Any]) -> ServiceDescriptor:
        spec = attrs.get("Spec", {})
        mode = spec.get("Mode", {})
        image = spec.get("TaskTemplate", {}).get("ContainerSpec", {}).get("Image", "")
        if "Global" in mode:
            return ServiceDescriptor(
                name=spec.get("Name", attrs.get("ID", "")),
                mode=ServiceMode.GLOBAL,
                desired_replicas=0,
                image=_strip_digest(image),
            )
        replicas = int((mode.get("Replicated") or {}).get("Replicas", 0))
        return ServiceDescriptor(
            name=spec.get("Name", attrs.get("ID", "")),
            mode=ServiceMode.REPLICATED,
            desired_replicas=replicas,
            image=_strip_digest(image),
        )
