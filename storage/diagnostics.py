"""Diagnostics routines for the snapshot storage subsystem."""

from __future__ import annotations

import os
from pathlib import Path

from core.errors import SnapshotFormatError
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from storage.snapshots import SnapshotStore


def probe(state_dir: Path | None = None) -> DiagnosticResult:
    """Run a storage probe to validate the maintenance state directory.

    Args:
        state_dir: Optional state directory for offline testing.

    Returns:
        Diagnostic result indicating storage readiness.
    """

    name = "storage"
    sentinel = None
    linked = None
    try:
        store = SnapshotStore.from_config() if state_dir is None else SnapshotStore(state_dir)
        store.state_dir.mkdir(parents=True, exist_ok=True)

        sentinel = store.state_dir / ".diagnostics_probe"
        sentinel.write_text("ok", encoding="utf-8")
        linked = store.state_dir / ".diagnostics_probe.link"
        os.link(sentinel, linked)

        if store.exists():
            snapshot = store.load()
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.WARN,
                details=(
                    "Maintenance mode active (snapshot created "
                    f"{snapshot.metadata.created_at})"
                ),
            )

        details = f"State directory writable at {store.state_dir}"
        return DiagnosticResult(name=name, status=DiagnosticStatus.PASS, details=details)
    except OSError as exc:
        details = f"Filesystem access failed: {exc}"
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=details)
    except SnapshotFormatError as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=str(exc))
    finally:
        for path in (linked, sentinel):
            if path is not None:
                path.unlink(missing_ok=True)
