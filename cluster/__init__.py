"""Cluster access and service classification."""

__all__ = ["ClusterQuery", "DockerClusterQuery", "FakeClusterQuery", "ServiceClassifier", "probe"]


def __getattr__(name: str):
    if name in {"ClusterQuery", "FakeClusterQuery"}:
        from cluster import query

        return getattr(query, name)
    if name == "DockerClusterQuery":
        from cluster.docker_query import DockerClusterQuery

        return DockerClusterQuery
    if name == "ServiceClassifier":
        from cluster.classifier import ServiceClassifier

        return ServiceClassifier
    if name == "probe":
        from cluster.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
