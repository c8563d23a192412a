"""Shared fixtures for maintenance tests."""

from __future__ import annotations

import pytest

from cluster.query import FakeClusterQuery
from config.controller import ConfigController


class SimClock:
    """Simulated monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def sim_clock() -> SimClock:
    return SimClock()


@pytest.fixture
def sample_cluster() -> FakeClusterQuery:
    """Single-node swarm with two apps, a database, ingress and a migration job."""

    cluster = FakeClusterQuery()
    cluster.add_service("api", "registry.local/api:1.4", replicas=3)
    cluster.add_service("worker", "registry.local/worker:1.4", replicas=2)
    cluster.add_service("postgres-db", "postgres:15", replicas=1)
    cluster.add_service("traefik", "traefik:v2.10", replicas=1)
    cluster.add_service("db-migrate", "registry.local/api:1.4", replicas=1)
    return cluster


@pytest.fixture(autouse=True)
def reset_config_singleton():
    ConfigController._instance = None
    yield
    ConfigController._instance = None
