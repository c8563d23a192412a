"""Command-line entry point for running diagnostics."""

from __future__ import annotations

import argparse
from pathlib import Path
import tempfile

from cluster.diagnostics import probe as cluster_probe
from cluster.query import FakeClusterQuery
from config.diagnostics import probe as config_probe
from core.diagnostics import probe as core_probe
from core.models import ServiceMode
from diagnostics.models import DiagnosticResult
from diagnostics.runner import format_results, has_failures, run_diagnostics
from storage.diagnostics import probe as storage_probe


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Run swarm maintenance diagnostics probes.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary directory and an in-memory swarm.",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Optional base directory holding config/ and state/ for offline diagnostics.",
    )
    return parser.parse_args(argv)


def offline_cluster() -> FakeClusterQuery:
    """Return a small in-memory swarm for offline probes."""

    cluster = FakeClusterQuery()
    cluster.add_service("web", "nginx:1.25", replicas=2)
    cluster.add_service("api", "example/api:1.0", replicas=2)
    cluster.add_service("postgres", "postgres:15", replicas=1)
    cluster.add_service("node-exporter", "prom/node-exporter", mode=ServiceMode.GLOBAL)
    return cluster


def run_offline(base_dir: Path) -> list[DiagnosticResult]:
    config_dir = base_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    default_config = config_dir / "default.yaml"
    if not default_config.exists():
        default_config.write_text("{}", encoding="utf-8")
    state_dir = base_dir / "state"
    cluster = offline_cluster()

    def config_probe_offline() -> DiagnosticResult:
        return config_probe(config_dir=config_dir)

    def storage_probe_offline() -> DiagnosticResult:
        return storage_probe(state_dir=state_dir)

    def cluster_probe_offline() -> DiagnosticResult:
        return cluster_probe(cluster=cluster)

    return run_diagnostics(
        [config_probe_offline, core_probe, storage_probe_offline, cluster_probe_offline]
    )


def run_live() -> list[DiagnosticResult]:
    return run_diagnostics([config_probe, core_probe, storage_probe, cluster_probe])


def main(argv: list[str] | None = None) -> int:
    """Run diagnostics and return an exit code."""

    args = parse_args(argv)
    if args.base_dir is not None:
        results = run_offline(args.base_dir)
    elif args.offline:
        with tempfile.TemporaryDirectory() as tmp_dir:
            results = run_offline(Path(tmp_dir))
    else:
        results = run_live()

    print(format_results(results))
    return 1 if has_failures(results) else 0


if __name__ == "__main__":
    raise SystemExit(main())
