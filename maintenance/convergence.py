"""Bounded polling until services reach their desired replica counts."""

from __future__ import annotations

import time
from typing import Callable, Iterable

from cluster.query import ClusterQuery
from core.errors import ConvergenceTimeoutError, MaintenanceError
from core.logging import logger as LOGGER
from core.models import ConvergenceResult, ConvergenceStatus

DEFAULT_TIMEOUT_S = 120.0
DEFAULT_POLL_INTERVAL_S = 2.0


class ConvergenceWaiter:
    """Poll the cluster until each named service is converged or time runs out.

    ``clock`` and ``sleep`` default to ``time.monotonic`` and ``time.sleep``;
    tests pass a simulated pair so no real time passes.
    """

    def __init__(
        self,
        cluster: ClusterQuery,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cluster = cluster
        self._clock = clock
        self._sleep = sleep

    def await_convergence(
        self,
        service_names: Iterable[str],
        timeout_s: float = DEFAULT_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> ConvergenceResult:
        """Wait for convergence; a timeout is reported, never raised."""

        names = list(dict.fromkeys(service_names))
        start = self._clock()
        deadline = start + max(0.0, timeout_s)
        poll_interval_s = max(0.01, poll_interval_s)

        while True:
            pending = self._pending(names)
            now = self._clock()
            if not pending:
                return ConvergenceResult(
                    status=ConvergenceStatus.CONVERGED,
                    elapsed_s=now - start,
                )
            if now >= deadline:
                LOGGER.warning(
                    "Timed out after %.0fs waiting for %s",
                    now - start,
                    ", ".join(
                        f"{name} ({current}/{desired})"
                        for name, (current, desired) in pending.items()
                    ),
                )
                return ConvergenceResult(
                    status=ConvergenceStatus.TIMED_OUT,
                    elapsed_s=now - start,
                    pending=pending,
                )
            LOGGER.debug("Waiting on %d service(s) to converge", len(pending))
            self._sleep(min(poll_interval_s, deadline - now))

    def await_or_raise(
        self,
        service_names: Iterable[str],
        timeout_s: float = DEFAULT_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> ConvergenceResult:
        """Like ``await_convergence`` but raise ConvergenceTimeoutError on timeout."""

        result = self.await_convergence(service_names, timeout_s, poll_interval_s)
        if not result.converged:
            raise ConvergenceTimeoutError(
                f"Services not converged after {result.elapsed_s:.0f}s: "
                f"{', '.join(sorted(result.pending))}",
                pending=dict(result.pending),
            )
        return result

    def _pending(self, names: list[str]) -> dict[str, tuple[int, int]]:
        pending: dict[str, tuple[int, int]] = {}
        for name in names:
            try:
                current, desired = self._cluster.current_replicas(name)
            except MaintenanceError as exc:
                LOGGER.warning("Unable to read replicas for %s: %s", name, exc)
                pending[name] = (-1, -1)
                continue
            if current != desired:
                pending[name] = (current, desired)
        return pending
