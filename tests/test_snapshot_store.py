"""Tests for the file-backed snapshot store."""

from __future__ import annotations

from datetime import datetime
import json
import os
from pathlib import Path
import stat

import pytest

from core.errors import ConflictError, NotFoundError, SnapshotFormatError
from core.models import Category, ServiceDescriptor, ServiceMode, SnapshotMetadata
from storage.snapshots import SnapshotStore


def _entries() -> list[ServiceDescriptor]:
    return [
        ServiceDescriptor("api", ServiceMode.REPLICATED, 3, "registry.local/api:1.4", Category.APP),
        ServiceDescriptor("postgres-db", ServiceMode.REPLICATED, 1, "postgres:15", Category.DATABASE),
        ServiceDescriptor("node-exporter", ServiceMode.GLOBAL, 0, "prom/node-exporter", Category.APP),
    ]


def _metadata(created_at: str = "2026-10-18T09:30:00") -> SnapshotMetadata:
    return SnapshotMetadata(
        created_at=created_at,
        hostname="swarm-01",
        node_count=1,
        category_counts={"app": 2, "db": 1, "ingress": 0, "oneshot": 0},
        total_services=3,
    )


def _store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "state", clock=lambda: datetime(2026, 10, 18, 9, 45, 0))


def test_create_then_load_round_trips(tmp_path: Path) -> None:
    store = _store(tmp_path)

    created = store.create(_entries(), _metadata())
    loaded = store.load()

    assert store.exists()
    assert loaded == created
    assert loaded.entries[0].desired_replicas == 3
    assert loaded.entries[2].mode is ServiceMode.GLOBAL
    assert loaded.metadata.hostname == "swarm-01"


def test_document_layout(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create(_entries(), _metadata())

    payload = json.loads(store.active_path.read_text(encoding="utf-8"))

    assert payload["version"] == 1
    assert payload["metadata"]["total_services"] == 3
    assert payload["services"][1] == {
        "name": "postgres-db",
        "mode": "replicated",
        "category": "db",
        "desired_replicas": 1,
        "image": "postgres:15",
    }


def test_create_conflict_leaves_existing_snapshot_untouched(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create(_entries(), _metadata())
    before = store.active_path.read_bytes()

    with pytest.raises(ConflictError) as excinfo:
        store.create(_entries()[:1], _metadata("2026-10-18T10:00:00"))

    assert "2026-10-18T09:30:00" in str(excinfo.value)
    assert store.active_path.read_bytes() == before


def test_create_with_overwrite_replaces_snapshot(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create(_entries(), _metadata())

    store.create(_entries()[:1], _metadata("2026-10-18T10:00:00"), overwrite=True)

    loaded = store.load()
    assert [entry.name for entry in loaded.entries] == ["api"]
    assert loaded.metadata.created_at == "2026-10-18T10:00:00"


def test_create_leaves_no_temporary_files(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create(_entries(), _metadata())
    with pytest.raises(ConflictError):
        store.create(_entries(), _metadata())

    assert sorted(path.name for path in store.state_dir.iterdir()) == ["current_snapshot.json"]


def test_load_without_snapshot_raises_not_found(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert not store.exists()
    with pytest.raises(NotFoundError):
        store.load()


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"version": 1, "metadata": {"created_at": "x"}}),
        json.dumps({"version": 99, "metadata": {"created_at": "x"}, "services": []}),
    ],
)
def test_load_corrupt_snapshot_raises_format_error(tmp_path: Path, content: str) -> None:
    store = _store(tmp_path)
    store.state_dir.mkdir(parents=True)
    store.active_path.write_text(content, encoding="utf-8")

    with pytest.raises(SnapshotFormatError):
        store.load()


def test_archive_moves_snapshot_and_marks_it_read_only(tmp_path: Path) -> None:
    store = _store(tmp_path)
    snapshot = store.create(_entries(), _metadata())

    archived = store.archive(snapshot)

    assert not store.exists()
    assert archived.path == store.archive_dir / "snapshot_20261018_094500.json"
    assert stat.S_IMODE(os.stat(archived.path).st_mode) == 0o444
    assert store.load_archive(archived.path).snapshot == snapshot


def test_archive_names_are_unique(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = store.archive(store.create(_entries(), _metadata()))
    second = store.archive(store.create(_entries(), _metadata("2026-10-18T11:00:00")))

    assert first.path != second.path
    assert second.path.name == "snapshot_20261018_094500_1.json"
    assert store.list_archives() == [first.path, second.path]
    assert store.load_archive(first.path).snapshot.metadata.created_at == "2026-10-18T09:30:00"


def test_archive_refuses_a_snapshot_that_changed(tmp_path: Path) -> None:
    store = _store(tmp_path)
    stale = store.create(_entries(), _metadata())
    store.create(_entries()[:1], _metadata("2026-10-18T10:00:00"), overwrite=True)

    with pytest.raises(ConflictError):
        store.archive(stale)

    assert store.exists()
    assert store.list_archives() == []


def test_list_archives_empty_without_archive_dir(tmp_path: Path) -> None:
    assert _store(tmp_path).list_archives() == []


def test_from_config_uses_state_dir(tmp_path: Path) -> None:
    store = SnapshotStore.from_config({"state_dir": str(tmp_path / "maint")})

    assert store.active_path == tmp_path / "maint" / "current_snapshot.json"


def test_racing_create_loses_to_existing_snapshot(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = _store(tmp_path)
    store.create(_entries(), _metadata())
    before = store.active_path.read_bytes()
    # A second writer that checked before the first one committed.
    monkeypatch.setattr(store, "exists", lambda: False)

    with pytest.raises(ConflictError) as excinfo:
        store.create(_entries()[:1], _metadata("2026-10-18T10:00:00"))

    assert "2026-10-18T09:30:00" in str(excinfo.value)
    assert store.active_path.read_bytes() == before
    assert sorted(path.name for path in store.state_dir.iterdir()) == ["current_snapshot.json"]
