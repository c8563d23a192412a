"""Tests for the maintenance controller workflows."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from cluster.query import FakeClusterQuery
from core.errors import ConflictError, OperatorAbortError, PreconditionError
from core.models import MaintenancePhase, MaintenanceState
from maintenance.controller import MaintenanceController
from maintenance.convergence import ConvergenceWaiter
from maintenance.sequencers import RestoreSequencer
from storage.snapshots import SnapshotStore


class _Recorder:
    """Stand-in for the confirmation prompt and reboot hook."""

    def __init__(self, answers: list[bool] | None = None) -> None:
        self.answers = list(answers or [])
        self.questions: list[str] = []
        self.reboots = 0

    def confirm(self, question: str) -> bool:
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else False

    def reboot(self) -> None:
        self.reboots += 1


def _controller(
    cluster: FakeClusterQuery,
    tmp_path: Path,
    sim_clock,
    recorder: _Recorder | None = None,
) -> MaintenanceController:
    recorder = recorder or _Recorder()
    waiter = ConvergenceWaiter(cluster, clock=sim_clock, sleep=sim_clock.sleep)
    return MaintenanceController(
        cluster,
        SnapshotStore(tmp_path / "state", clock=lambda: datetime(2026, 10, 18, 8, 0, 0)),
        restore=RestoreSequencer(cluster, waiter, poll_interval_s=1),
        hostname=lambda: "swarm-01",
        now=lambda: datetime(2026, 10, 18, 7, 59, 30),
        confirm=recorder.confirm,
        reboot=recorder.reboot,
        sleep=sim_clock.sleep,
    )


def test_enter_then_exit_restores_every_managed_service(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)

    entered = controller.enter()

    assert entered.ok
    assert controller.phase is MaintenancePhase.MAINTENANCE_ACTIVE
    assert controller.state() is MaintenanceState.ACTIVE
    assert entered.snapshot.metadata.created_at == "2026-10-18T07:59:30"
    assert entered.snapshot.metadata.hostname == "swarm-01"
    assert entered.snapshot.metadata.category_counts == {
        "app": 2,
        "db": 1,
        "ingress": 1,
        "oneshot": 1,
    }
    assert sample_cluster.current_replicas("api") == (0, 0)

    exited = controller.exit()

    assert exited.ok
    assert exited.restored
    assert exited.archived_to is not None and exited.archived_to.exists()
    assert controller.phase is MaintenancePhase.IDLE
    assert controller.state() is MaintenanceState.IDLE
    assert sample_cluster.current_replicas("api") == (3, 3)
    assert sample_cluster.current_replicas("worker") == (2, 2)
    assert sample_cluster.current_replicas("traefik") == (1, 1)
    assert sample_cluster.calls_for("db-migrate") == []


def test_enter_twice_without_force_conflicts(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)
    first = controller.enter()
    before = controller._store.active_path.read_bytes()
    calls = list(sample_cluster.calls)

    with pytest.raises(ConflictError):
        controller.enter()

    assert controller._store.active_path.read_bytes() == before
    assert sample_cluster.calls == calls
    assert controller.phase is MaintenancePhase.MAINTENANCE_ACTIVE
    assert controller._store.load() == first.snapshot


def test_enter_with_force_keeps_recorded_counts(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)
    controller.enter()
    sample_cluster.add_service("grafana", "grafana/grafana:10", replicas=1)

    entered = controller.enter(force=True)

    assert entered.ok
    recorded = {entry.name: entry.desired_replicas for entry in controller._store.load().entries}
    assert recorded == {
        "api": 3,
        "worker": 2,
        "postgres-db": 1,
        "traefik": 1,
        "db-migrate": 1,
        "grafana": 1,
    }

    controller.exit()

    assert sample_cluster.current_replicas("api") == (3, 3)
    assert sample_cluster.current_replicas("grafana") == (1, 1)


def test_enter_with_force_over_unreadable_snapshot(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)
    controller.enter()
    controller._store.active_path.write_text("{broken", encoding="utf-8")

    entered = controller.enter(force=True)

    api = next(entry for entry in entered.snapshot.entries if entry.name == "api")
    assert api.desired_replicas == 0
    assert controller._store.load() == entered.snapshot


def test_dry_run_changes_nothing(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)

    result = controller.enter(dry_run=True)

    assert result.dry_run
    assert result.snapshot is None
    assert not result.snapshot_exists
    assert [action.service for action in result.planned] == [
        "api",
        "worker",
        "postgres-db",
        "traefik",
    ]
    assert sample_cluster.calls == []
    assert not controller._store.exists()
    assert controller.phase is MaintenancePhase.IDLE


def test_enter_requires_an_active_swarm(sample_cluster, tmp_path, sim_clock) -> None:
    sample_cluster.ready = False
    controller = _controller(sample_cluster, tmp_path, sim_clock)

    with pytest.raises(PreconditionError):
        controller.enter()

    assert not controller._store.exists()
    assert sample_cluster.calls == []


def test_exit_without_snapshot_is_a_noop(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)

    result = controller.exit()

    assert not result.restored
    assert result.ok
    assert sample_cluster.calls == []
    assert controller._store.list_archives() == []


def test_exit_keep_snapshot_leaves_maintenance_active(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)
    controller.enter()

    result = controller.exit(keep_snapshot=True)

    assert result.archived_to is None
    assert controller.state() is MaintenanceState.ACTIVE
    assert sample_cluster.current_replicas("api") == (3, 3)


def test_exit_with_failures_keeps_snapshot(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)
    controller.enter()
    sample_cluster.failing.add("worker")

    result = controller.exit()

    assert not result.ok
    assert result.report.failures.keys() == {"worker"}
    assert result.archived_to is None
    assert controller.state() is MaintenanceState.ACTIVE
    assert controller.phase is MaintenancePhase.MAINTENANCE_ACTIVE
    assert sample_cluster.current_replicas("api") == (3, 3)


def test_exit_reports_services_created_after_snapshot(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)
    controller.enter()
    sample_cluster.add_service("grafana", "grafana/grafana:10", replicas=1)

    result = controller.exit()

    assert result.unmanaged == ["grafana"]
    assert sample_cluster.calls_for("grafana") == []


def test_status_idle_and_active(sample_cluster, tmp_path, sim_clock) -> None:
    controller = _controller(sample_cluster, tmp_path, sim_clock)

    idle = controller.status()
    assert idle.state is MaintenanceState.IDLE
    assert idle.metadata is None
    assert idle.single_node
    assert idle.node_availability == "active"
    assert idle.replicas["api"] == (3, 3)

    controller.enter()
    active = controller.status()
    assert active.active
    assert active.metadata.total_services == 5
    assert active.replicas["api"] == (0, 0)

    controller.exit()
    assert controller.status().archive_count == 1


def test_controller_resumes_in_maintenance_when_snapshot_exists(sample_cluster, tmp_path, sim_clock) -> None:
    _controller(sample_cluster, tmp_path, sim_clock).enter()

    resumed = _controller(sample_cluster, tmp_path, sim_clock)

    assert resumed.phase is MaintenancePhase.MAINTENANCE_ACTIVE


def test_safe_reboot_auto_confirm_reboots_after_delay(sample_cluster, tmp_path, sim_clock) -> None:
    recorder = _Recorder()
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    result = controller.safe_reboot(auto_confirm=True)

    assert result.rebooted
    assert recorder.reboots == 1
    assert recorder.questions == []
    assert result.still_running == []
    assert sim_clock.sleeps == [2.0, 5.0]
    assert controller.state() is MaintenanceState.ACTIVE


def test_safe_reboot_declined_keeps_maintenance(sample_cluster, tmp_path, sim_clock) -> None:
    recorder = _Recorder(answers=[False])
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    result = controller.safe_reboot()

    assert not result.rebooted
    assert recorder.reboots == 0
    assert recorder.questions == ["Reboot now?"]
    assert controller.state() is MaintenanceState.ACTIVE


def test_safe_reboot_multi_node_requires_confirmation(sample_cluster, tmp_path, sim_clock) -> None:
    sample_cluster.nodes = 3
    recorder = _Recorder(answers=[False])
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    with pytest.raises(OperatorAbortError):
        controller.safe_reboot(auto_confirm=True)

    assert recorder.questions == ["Continue with safe-reboot anyway?"]
    assert sample_cluster.calls == []
    assert not controller._store.exists()


def test_safe_reboot_multi_node_confirmed_proceeds(sample_cluster, tmp_path, sim_clock) -> None:
    sample_cluster.nodes = 2
    recorder = _Recorder(answers=[True, True])
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    result = controller.safe_reboot()

    assert result.rebooted
    assert result.enter.snapshot.metadata.node_count == 2


def test_safe_reboot_reports_services_still_running(sample_cluster, tmp_path, sim_clock) -> None:
    sample_cluster.stuck.add("worker")
    recorder = _Recorder(answers=[False])
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    result = controller.safe_reboot()

    assert result.still_running == ["worker"]


def test_safe_reboot_yes_still_asks_when_scale_down_failed(sample_cluster, tmp_path, sim_clock) -> None:
    sample_cluster.failing.add("worker")
    recorder = _Recorder(answers=[False])
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    result = controller.safe_reboot(auto_confirm=True)

    assert not result.enter.ok
    assert not result.rebooted
    assert recorder.reboots == 0
    assert recorder.questions == ["Reboot now?"]
    assert 5.0 not in sim_clock.sleeps


def test_safe_reboot_yes_after_failure_reboots_once_confirmed(sample_cluster, tmp_path, sim_clock) -> None:
    sample_cluster.failing.add("worker")
    recorder = _Recorder(answers=[True])
    controller = _controller(sample_cluster, tmp_path, sim_clock, recorder)

    result = controller.safe_reboot(auto_confirm=True)

    assert result.rebooted
    assert recorder.reboots == 1
