"""Diagnostics routines for orchestrator access."""

from __future__ import annotations

from cluster.query import ClusterQuery
from core.errors import MaintenanceError
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(cluster: ClusterQuery | None = None) -> DiagnosticResult:
    """Check that this node manages an active swarm.

    Args:
        cluster: Optional cluster query for offline testing.

    Returns:
        Diagnostic result indicating orchestrator readiness.
    """

    name = "cluster"
    if cluster is None:
        from cluster.docker_query import DockerClusterQuery

        cluster = DockerClusterQuery()

    try:
        cluster.ensure_ready()
        node_count = cluster.node_count()
        services = cluster.list_services()
    except MaintenanceError as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=str(exc))

    details = f"Swarm manager ready ({node_count} node(s), {len(services)} service(s))"
    if node_count > 1:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"{details}; multi-node swarm, prefer draining this node",
        )
    return DiagnosticResult(name=name, status=DiagnosticStatus.PASS, details=details)
