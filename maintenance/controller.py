"""Maintenance controller coordinating snapshot, shutdown and restore."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
import socket
import subprocess
import time
from typing import Any, Callable, Mapping, Sequence

from cluster.classifier import ClassifierPatterns, ServiceClassifier, count_by_category
from cluster.query import ClusterQuery
from core.errors import (
    ExecutionError,
    MaintenanceError,
    NotFoundError,
    OperatorAbortError,
    SnapshotFormatError,
)
from core.logging import log_banner, log_info, log_phase_transition, log_warning
from core.models import (
    Category,
    MaintenancePhase,
    MaintenanceState,
    PlannedAction,
    SequenceReport,
    ServiceDescriptor,
    Snapshot,
    SnapshotMetadata,
)
from maintenance.convergence import ConvergenceWaiter
from maintenance.sequencers import RestoreSequencer, ShutdownSequencer
from storage.snapshots import SnapshotStore


@dataclass(frozen=True)
class EnterResult:
    """Outcome of entering maintenance mode (or of a dry run)."""

    dry_run: bool
    planned: list[PlannedAction]
    services: list[ServiceDescriptor] = field(default_factory=list)
    snapshot: Snapshot | None = None
    report: SequenceReport | None = None
    snapshot_exists: bool = False

    @property
    def ok(self) -> bool:
        return self.report is None or self.report.ok


@dataclass(frozen=True)
class ExitResult:
    """Outcome of leaving maintenance mode."""

    restored: bool
    snapshot: Snapshot | None = None
    report: SequenceReport | None = None
    archived_to: Path | None = None
    unmanaged: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.report is None or self.report.ok


@dataclass(frozen=True)
class StatusReport:
    """Read-only view of the host maintenance state."""

    state: MaintenanceState
    node_count: int
    node_availability: str
    metadata: SnapshotMetadata | None = None
    archive_count: int = 0
    replicas: Mapping[str, tuple[int, int]] = field(default_factory=dict)

    @property
    def active(self) -> bool:
        return self.state is MaintenanceState.ACTIVE

    @property
    def single_node(self) -> bool:
        return self.node_count == 1


@dataclass(frozen=True)
class RebootResult:
    enter: EnterResult
    still_running: list[str]
    rebooted: bool


def prompt_yes_no(question: str) -> bool:
    """Ask a ``[y/N]`` question on the terminal; anything but yes declines."""

    try:
        answer = input(f"{question} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def run_reboot_command(command: Sequence[str]) -> None:
    try:
        subprocess.run(list(command), check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise ExecutionError("host", f"reboot command {' '.join(command)!r} failed: {exc}") from exc


class MaintenanceController:
    """State machine for entering and leaving swarm maintenance mode.

    The only durable state is the active snapshot: while it exists the host is
    in maintenance. The in-process phase is tracked for logging and moves
    ``idle → snapshotting → scaling_down → maintenance_active`` on enter and
    ``maintenance_active → restoring → idle`` on exit.
    """

    def __init__(
        self,
        cluster: ClusterQuery,
        store: SnapshotStore,
        classifier: ServiceClassifier | None = None,
        *,
        shutdown: ShutdownSequencer | None = None,
        restore: RestoreSequencer | None = None,
        hostname: Callable[[], str] = socket.gethostname,
        now: Callable[[], datetime] = datetime.now,
        confirm: Callable[[str], bool] = prompt_yes_no,
        reboot: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        settle_s: float = 2.0,
        reboot_delay_s: float = 5.0,
    ) -> None:
        self._cluster = cluster
        self._store = store
        self._classifier = classifier or ServiceClassifier()
        self._shutdown = shutdown or ShutdownSequencer(cluster)
        self._restore = restore or RestoreSequencer(cluster, ConvergenceWaiter(cluster))
        self._hostname = hostname
        self._now = now
        self._confirm = confirm
        self._reboot = reboot or (lambda: run_reboot_command(["sudo", "reboot"]))
        self._sleep = sleep
        self._settle_s = settle_s
        self._reboot_delay_s = reboot_delay_s
        self._phase = (
            MaintenancePhase.MAINTENANCE_ACTIVE if store.exists() else MaintenancePhase.IDLE
        )

    @classmethod
    def build(
        cls,
        config: Mapping[str, Any] | None = None,
        cluster: ClusterQuery | None = None,
        confirm: Callable[[str], bool] = prompt_yes_no,
    ) -> "MaintenanceController":
        """Wire a controller from the ``maintenance`` config section."""

        if config is None:
            from config import ConfigController

            config = ConfigController.get_instance().get_maintenance_config()
        if cluster is None:
            from cluster.docker_query import DockerClusterQuery

            cluster = DockerClusterQuery()

        waiter = ConvergenceWaiter(cluster)
        reboot_command = list(config.get("reboot_command", ["sudo", "reboot"]))
        return cls(
            cluster,
            SnapshotStore.from_config(config),
            ServiceClassifier(ClassifierPatterns.from_config(config)),
            restore=RestoreSequencer.from_config(cluster, waiter, config),
            confirm=confirm,
            reboot=lambda: run_reboot_command(reboot_command),
            settle_s=float(config.get("settle_s", 2.0)),
            reboot_delay_s=float(config.get("reboot_delay_s", 5.0)),
        )

    @property
    def phase(self) -> MaintenancePhase:
        return self._phase

    def state(self) -> MaintenanceState:
        return MaintenanceState.ACTIVE if self._store.exists() else MaintenanceState.IDLE

    def enter(self, force: bool = False, dry_run: bool = False) -> EnterResult:
        """Snapshot the cluster and scale every managed service down."""

        log_banner("ENTERING SWARM MAINTENANCE MODE")
        self._cluster.ensure_ready()
        node_count = self._cluster.node_count()
        log_info(f"Swarm Status: Active ({node_count} node(s))")

        services = self._classifier.classify_all(self._cluster.list_services())
        planned = self._shutdown.plan(services)

        if dry_run:
            exists = self._store.exists()
            log_info("🔍 DRY RUN MODE - No changes will be made", style="bold magenta")
            log_info(f"Would create snapshot at: {self._store.active_path}")
            if exists:
                log_warning("An active snapshot already exists; enter would need --force.")
            for service in services:
                log_info(
                    f"  {service.name:<30} {service.mode.value:<10} "
                    f"{service.desired_replicas:>3}  {service.category.value:<8} {service.image}",
                    style="white",
                )
            for action in planned:
                log_info(f"  would issue {action.describe()}", style="white")
            return EnterResult(
                dry_run=True, planned=planned, services=services, snapshot_exists=exists
            )

        self._transition(MaintenancePhase.SNAPSHOTTING, "enter")
        try:
            snapshot = self._capture(services, node_count, force)
        except MaintenanceError:
            self._transition(
                MaintenancePhase.MAINTENANCE_ACTIVE if self._store.exists() else MaintenancePhase.IDLE,
                "snapshot rejected",
            )
            raise

        self._transition(MaintenancePhase.SCALING_DOWN)
        log_info("Scaling down services in safe order...")
        report = self._shutdown.shutdown(snapshot.entries)
        self._transition(MaintenancePhase.MAINTENANCE_ACTIVE)

        log_banner("MAINTENANCE MODE ACTIVE")
        log_info("All services have been scaled down safely.")
        log_info("You can now reboot the server, then restore with: swarmkeep exit")
        return EnterResult(
            dry_run=False,
            planned=planned,
            services=services,
            snapshot=snapshot,
            report=report,
        )

    def exit(self, keep_snapshot: bool = False) -> ExitResult:
        """Restore services from the active snapshot and archive it."""

        log_banner("EXITING SWARM MAINTENANCE MODE")
        self._cluster.ensure_ready()

        try:
            snapshot = self._store.load()
        except NotFoundError:
            log_warning("⚠️  No active maintenance mode detected (no snapshot found).")
            log_info("If services are already running, no action is needed.")
            self._transition(MaintenancePhase.IDLE, "no snapshot")
            return ExitResult(restored=False)

        self._transition(MaintenancePhase.RESTORING, "exit")
        metadata = snapshot.metadata
        log_info(
            f"Snapshot from {metadata.created_at} on {metadata.hostname}: "
            f"{metadata.total_services} service(s) {dict(metadata.category_counts)}"
        )
        report = self._restore.restore(snapshot.entries)
        unmanaged = self._unmanaged(snapshot)

        archived_to = None
        if keep_snapshot:
            log_info(f"Keeping snapshot at {self._store.active_path}")
        elif report.ok:
            archived_to = self._store.archive(snapshot).path
            log_info(f"Snapshot archived to: {archived_to}")
        else:
            log_warning(
                "Some services failed to restore; the snapshot stays active so "
                "'swarmkeep exit' can be run again."
            )

        self._transition(
            MaintenancePhase.IDLE if archived_to else MaintenancePhase.MAINTENANCE_ACTIVE,
            "restore finished",
        )
        log_banner("MAINTENANCE MODE EXITED")
        return ExitResult(
            restored=True,
            snapshot=snapshot,
            report=report,
            archived_to=archived_to,
            unmanaged=unmanaged,
        )

    def status(self) -> StatusReport:
        """Report the maintenance state without changing anything."""

        self._cluster.ensure_ready()
        metadata = self._store.load().metadata if self._store.exists() else None
        return StatusReport(
            state=MaintenanceState.ACTIVE if metadata else MaintenanceState.IDLE,
            node_count=self._cluster.node_count(),
            node_availability=self._cluster.node_availability(),
            metadata=metadata,
            archive_count=len(self._store.list_archives()),
            replicas=self._replica_counts(),
        )

    def safe_reboot(self, force: bool = False, auto_confirm: bool = False) -> RebootResult:
        """Enter maintenance mode, then reboot the host once confirmed."""

        log_banner("SAFE SWARM REBOOT")
        self._cluster.ensure_ready()
        node_count = self._cluster.node_count()
        if node_count > 1:
            log_warning(f"⚠️  Multi-node swarm detected ({node_count} nodes).")
            log_info("For multi-node swarms, consider draining this node instead:")
            log_info(f"  docker node update --availability drain {self._hostname()}")
            if not self._confirm("Continue with safe-reboot anyway?"):
                raise OperatorAbortError("Aborted: multi-node safe-reboot was not confirmed.")

        entered = self.enter(force=force)

        log_info("Verifying services are stopped...")
        self._sleep(self._settle_s)
        still_running = self._still_running(entered.snapshot)
        if still_running:
            log_warning(
                f"⚠️  Some services may still be running: {', '.join(still_running)}. "
                "Check with: docker service ls"
            )

        log_banner("READY TO REBOOT")
        log_info("After reboot, restore services with: swarmkeep exit")

        if auto_confirm and not entered.ok:
            log_warning(
                f"⚠️  {len(entered.report.failures)} service(s) failed to scale down; "
                "asking before rebooting despite --yes."
            )
            auto_confirm = False

        if auto_confirm:
            log_info(f"Rebooting in {self._reboot_delay_s:.0f} seconds... (Ctrl+C to cancel)")
            self._sleep(self._reboot_delay_s)
            self._reboot()
            rebooted = True
        elif self._confirm("Reboot now?"):
            log_info("Rebooting...")
            self._reboot()
            rebooted = True
        else:
            log_info("Reboot cancelled. To reboot manually, run: reboot")
            log_info("To restore services without rebooting: swarmkeep exit")
            rebooted = False

        return RebootResult(enter=entered, still_running=still_running, rebooted=rebooted)

    def _capture(
        self,
        services: list[ServiceDescriptor],
        node_count: int,
        force: bool,
    ) -> Snapshot:
        if force and self._store.exists():
            services = self._with_recorded_counts(services)
        metadata = SnapshotMetadata(
            created_at=self._now().isoformat(timespec="seconds"),
            hostname=self._hostname(),
            node_count=node_count,
            category_counts=count_by_category(services),
            total_services=len(services),
        )
        log_info("Creating service snapshot...")
        snapshot = self._store.create(services, metadata, overwrite=force)
        counts = metadata.category_counts
        log_info(
            f"✅ Snapshot created: {metadata.total_services} service(s) "
            f"(Apps: {counts.get(Category.APP.value, 0)}, "
            f"DBs: {counts.get(Category.DATABASE.value, 0)}, "
            f"Ingress: {counts.get(Category.INGRESS.value, 0)}, "
            f"One-shot: {counts.get(Category.ONESHOT.value, 0)})",
            style="bold green",
        )
        return snapshot

    def _with_recorded_counts(self, services: list[ServiceDescriptor]) -> list[ServiceDescriptor]:
        """Keep the previous desired counts of services that are already scaled down."""

        try:
            previous = {entry.name: entry for entry in self._store.load().entries}
        except SnapshotFormatError as exc:
            log_warning(
                f"Overwriting an unreadable snapshot ({exc}); services already scaled "
                "down will be recorded with their current replica counts."
            )
            return services

        kept: list[ServiceDescriptor] = []
        carried: list[str] = []
        for service in services:
            recorded = previous.get(service.name)
            if (
                recorded is not None
                and not service.is_global
                and service.desired_replicas == 0
                and recorded.desired_replicas > 0
            ):
                service = replace(service, desired_replicas=recorded.desired_replicas)
                carried.append(service.name)
            kept.append(service)
        log_warning(
            "Overwriting the active snapshot; kept the recorded replica counts of "
            f"{len(carried)} service(s) that are already scaled down."
        )
        return kept

    def _still_running(self, snapshot: Snapshot | None) -> list[str]:
        if snapshot is None:
            return []
        running: list[str] = []
        for entry in snapshot.entries:
            if entry.category is Category.ONESHOT:
                continue
            try:
                current, _desired = self._cluster.current_replicas(entry.name)
            except MaintenanceError:
                continue
            if current > 0:
                running.append(entry.name)
        return running

    def _replica_counts(self) -> dict[str, tuple[int, int]]:
        counts: dict[str, tuple[int, int]] = {}
        for service in self._cluster.list_services():
            try:
                counts[service.name] = self._cluster.current_replicas(service.name)
            except MaintenanceError:
                continue
        return counts

    def _unmanaged(self, snapshot: Snapshot) -> list[str]:
        """Services created after the snapshot; restore leaves them untouched."""

        known = {entry.name for entry in snapshot.entries}
        try:
            current = self._cluster.list_services()
        except MaintenanceError as exc:
            log_warning(f"Unable to list services after restore: {exc}")
            return []
        unmanaged = sorted(service.name for service in current if service.name not in known)
        if unmanaged:
            log_info(f"Services not in the snapshot were left untouched: {', '.join(unmanaged)}")
        return unmanaged

    def _transition(self, phase: MaintenancePhase, reason: str | None = None) -> None:
        if phase == self._phase:
            return
        previous = self._phase
        self._phase = phase
        log_phase_transition(previous, phase, reason=reason)
