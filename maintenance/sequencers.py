"""Tier-ordered shutdown and restore of swarm services."""

from __future__ import annotations

from itertools import groupby
from typing import Any, Iterable, Mapping

from cluster.query import ClusterQuery
from core.errors import ExecutionError, MaintenanceError
from core.logging import log_error, log_info, log_warning
from core.models import (
    GLOBAL_CAP_UNRESTRICTED,
    Category,
    PlannedAction,
    SequenceReport,
    ServiceDescriptor,
)
from maintenance.convergence import DEFAULT_POLL_INTERVAL_S, ConvergenceWaiter

GLOBAL_TIER = "global"

TIER_LABELS = {
    Category.APP.value: "📦 application",
    Category.DATABASE.value: "🗄️  database",
    Category.INGRESS.value: "🌐 ingress",
    GLOBAL_TIER: "🌍 global",
}

DEFAULT_TIER_TIMEOUTS_S = {
    GLOBAL_TIER: 120.0,
    Category.INGRESS.value: 120.0,
    Category.DATABASE.value: 180.0,
    Category.APP.value: 180.0,
}

_TIMEOUT_CONFIG_KEYS = {
    GLOBAL_TIER: "global_s",
    Category.INGRESS.value: "ingress_s",
    Category.DATABASE.value: "database_s",
    Category.APP.value: "app_s",
}


def _category(entry: ServiceDescriptor) -> Category:
    return entry.category or Category.APP


def _replicated_in(entries: Iterable[ServiceDescriptor], category: Category) -> list[ServiceDescriptor]:
    return [entry for entry in entries if not entry.is_global and _category(entry) is category]


def _managed_globals(entries: Iterable[ServiceDescriptor]) -> list[ServiceDescriptor]:
    return [entry for entry in entries if entry.is_global and _category(entry) is not Category.ONESHOT]


def _oneshots(entries: Iterable[ServiceDescriptor]) -> list[str]:
    return [entry.name for entry in entries if _category(entry) is Category.ONESHOT]


def _by_tier(actions: list[PlannedAction]) -> list[tuple[str, list[PlannedAction]]]:
    return [(tier, list(group)) for tier, group in groupby(actions, key=lambda action: action.tier)]


def _apply(cluster: ClusterQuery, action: PlannedAction, report: SequenceReport) -> bool:
    """Issue one call; failures are recorded and do not stop the tier."""

    try:
        if action.action == "cap":
            cluster.set_global_cap(action.service, action.value)
        else:
            cluster.scale(action.service, action.value)
    except MaintenanceError as exc:
        reason = exc.reason if isinstance(exc, ExecutionError) else str(exc)
        log_error(f"   ✗ {action.service}: {reason}")
        report.failures[action.service] = reason
        return False
    log_info(f"   • {action.describe()}", style="white")
    report.issued.append(action)
    return True


class ShutdownSequencer:
    """Scale services down: applications, then databases, then ingress.

    Global services have their per-node cap set to zero after the replicated
    tiers. Calls are fire-and-forget; no convergence wait happens between tiers.
    """

    TIER_ORDER = (Category.APP, Category.DATABASE, Category.INGRESS)

    def __init__(self, cluster: ClusterQuery) -> None:
        self._cluster = cluster

    def plan(self, entries: Iterable[ServiceDescriptor]) -> list[PlannedAction]:
        entries = list(entries)
        actions: list[PlannedAction] = []
        for category in self.TIER_ORDER:
            for entry in _replicated_in(entries, category):
                actions.append(PlannedAction(category.value, entry.name, "scale", 0))
        for entry in _managed_globals(entries):
            actions.append(PlannedAction(GLOBAL_TIER, entry.name, "cap", 0))
        return actions

    def shutdown(self, entries: Iterable[ServiceDescriptor]) -> SequenceReport:
        entries = list(entries)
        report = SequenceReport(skipped=_oneshots(entries))
        if report.skipped:
            log_info(f"⏭️  Leaving one-shot services untouched: {', '.join(report.skipped)}")

        for tier, actions in _by_tier(self.plan(entries)):
            log_info(f"{TIER_LABELS[tier]}: scaling down {len(actions)} service(s)...")
            for action in actions:
                _apply(self._cluster, action, report)

        if report.ok:
            log_info("✅ All services scaled down", style="bold green")
        else:
            log_warning(f"⚠️  {len(report.failures)} service(s) could not be scaled down")
        return report


class RestoreSequencer:
    """Bring services back in the reverse order of shutdown.

    Global caps are lifted first, then ingress, database and application tiers
    are scaled to their recorded replica counts. Each tier is awaited before
    the next one starts; a timeout is logged and the sequence moves on.
    """

    TIER_ORDER = (Category.INGRESS, Category.DATABASE, Category.APP)

    def __init__(
        self,
        cluster: ClusterQuery,
        waiter: ConvergenceWaiter,
        *,
        timeouts_s: Mapping[str, float] | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        unrestricted_cap: int = GLOBAL_CAP_UNRESTRICTED,
    ) -> None:
        self._cluster = cluster
        self._waiter = waiter
        self._timeouts_s = {**DEFAULT_TIER_TIMEOUTS_S, **dict(timeouts_s or {})}
        self._poll_interval_s = poll_interval_s
        self._unrestricted_cap = unrestricted_cap

    @classmethod
    def from_config(
        cls,
        cluster: ClusterQuery,
        waiter: ConvergenceWaiter,
        config: Mapping[str, Any],
    ) -> "RestoreSequencer":
        timeouts_cfg = config.get("timeouts") or {}
        timeouts_s = {
            tier: float(timeouts_cfg[key])
            for tier, key in _TIMEOUT_CONFIG_KEYS.items()
            if key in timeouts_cfg
        }
        return cls(
            cluster,
            waiter,
            timeouts_s=timeouts_s,
            poll_interval_s=float(config.get("poll_interval_s", DEFAULT_POLL_INTERVAL_S)),
            unrestricted_cap=int(config.get("global_cap_unrestricted", GLOBAL_CAP_UNRESTRICTED)),
        )

    def plan(self, entries: Iterable[ServiceDescriptor]) -> list[PlannedAction]:
        entries = list(entries)
        actions = [
            PlannedAction(GLOBAL_TIER, entry.name, "cap", self._unrestricted_cap)
            for entry in _managed_globals(entries)
        ]
        for category in self.TIER_ORDER:
            for entry in _replicated_in(entries, category):
                actions.append(
                    PlannedAction(category.value, entry.name, "scale", entry.desired_replicas)
                )
        return actions

    def restore(self, entries: Iterable[ServiceDescriptor]) -> SequenceReport:
        entries = list(entries)
        report = SequenceReport(skipped=_oneshots(entries))
        if report.skipped:
            log_info(f"⏭️  Not restarting one-shot services: {', '.join(report.skipped)}")

        for tier, actions in _by_tier(self.plan(entries)):
            log_info(f"{TIER_LABELS[tier]}: restoring {len(actions)} service(s)...")
            started = [action.service for action in actions if _apply(self._cluster, action, report)]
            if not started:
                continue

            timeout_s = self._timeouts_s[tier]
            result = self._waiter.await_convergence(started, timeout_s, self._poll_interval_s)
            report.convergence[tier] = result
            if result.converged:
                log_info(
                    f"   ✅ {tier} tier converged in {result.elapsed_s:.0f}s",
                    style="bold green",
                )
            else:
                log_warning(
                    f"   ⚠️  {tier} tier not converged after {timeout_s:.0f}s; continuing. "
                    f"Still pending: {', '.join(sorted(result.pending))}"
                )

        if report.ok:
            log_info("✅ Services restored", style="bold green")
        else:
            log_warning(f"⚠️  {len(report.failures)} service(s) could not be restored")
        return report
