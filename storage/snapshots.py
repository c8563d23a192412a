"""File-backed store for the active maintenance snapshot and its archive."""

from __future__ import annotations

from datetime import datetime
import itertools
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Callable, Iterable, Mapping

from core.errors import ConflictError, NotFoundError, SnapshotFormatError
from core.models import ArchivedSnapshot, ServiceDescriptor, Snapshot, SnapshotMetadata


LOGGER = logging.getLogger(__name__)

ACTIVE_SNAPSHOT_NAME = "current_snapshot.json"
ARCHIVE_DIR_NAME = "archive"


class SnapshotStore:
    """Persist at most one active snapshot per host.

    The active snapshot lives at ``<state_dir>/current_snapshot.json``. Its
    presence is what marks the host as being in maintenance. Documents are
    written to a temporary file in the same directory and committed with a
    single link or rename, so readers never observe a half-written record.
    Archived snapshots are moved to ``<state_dir>/archive`` and never removed.
    """

    def __init__(self, state_dir: Path, clock: Callable[[], datetime] = datetime.now) -> None:
        self.state_dir = Path(state_dir).expanduser()
        self._clock = clock

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> "SnapshotStore":
        if config is None:
            from config import ConfigController

            config = ConfigController.get_instance().get_maintenance_config()
        return cls(Path(config["state_dir"]))

    @property
    def active_path(self) -> Path:
        return self.state_dir / ACTIVE_SNAPSHOT_NAME

    @property
    def archive_dir(self) -> Path:
        return self.state_dir / ARCHIVE_DIR_NAME

    def exists(self) -> bool:
        return self.active_path.is_file()

    def create(
        self,
        entries: Iterable[ServiceDescriptor],
        metadata: SnapshotMetadata,
        overwrite: bool = False,
    ) -> Snapshot:
        """Persist a new active snapshot.

        Raises:
            ConflictError: An active snapshot exists and ``overwrite`` is false.
        """

        snapshot = Snapshot(entries=tuple(entries), metadata=metadata)
        if not overwrite and self.exists():
            raise self._conflict()

        self.state_dir.mkdir(parents=True, exist_ok=True)
        temp_path = self._write_temp(snapshot.to_dict())
        try:
            if overwrite:
                os.replace(temp_path, self.active_path)
            else:
                try:
                    os.link(temp_path, self.active_path)
                except FileExistsError:
                    raise self._conflict() from None
        finally:
            temp_path.unlink(missing_ok=True)

        LOGGER.info("Snapshot written to %s", self.active_path)
        return snapshot

    def load(self) -> Snapshot:
        """Return the active snapshot.

        Raises:
            NotFoundError: No active snapshot exists.
            SnapshotFormatError: The snapshot document is unreadable.
        """

        return self._read(self.active_path)

    def archive(self, snapshot: Snapshot) -> ArchivedSnapshot:
        """Move the active snapshot into the archive and clear the active marker."""

        current = self.load()
        if current != snapshot:
            raise ConflictError(
                "The active snapshot changed since it was loaded; refusing to archive it."
            )

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._clock().strftime("%Y%m%d_%H%M%S")
        for index in itertools.count():
            suffix = f"_{index}" if index else ""
            target = self.archive_dir / f"snapshot_{stamp}{suffix}.json"
            try:
                os.link(self.active_path, target)
            except FileExistsError:
                continue
            break

        os.chmod(target, 0o444)
        self.active_path.unlink()
        LOGGER.info("Snapshot archived to %s", target)
        return ArchivedSnapshot(path=target, snapshot=snapshot)

    def list_archives(self) -> list[Path]:
        if not self.archive_dir.is_dir():
            return []
        return sorted(self.archive_dir.glob("snapshot_*.json"))

    def load_archive(self, path: Path) -> ArchivedSnapshot:
        return ArchivedSnapshot(path=Path(path), snapshot=self._read(Path(path)))

    def _read(self, path: Path) -> Snapshot:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError(f"No snapshot found at {path}") from None
        except OSError as exc:
            raise SnapshotFormatError(f"Unable to read snapshot {path}: {exc}") from exc

        try:
            return Snapshot.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise SnapshotFormatError(f"Snapshot {path} is not valid: {exc}") from exc

    def _write_temp(self, payload: dict[str, Any]) -> Path:
        fd, name = tempfile.mkstemp(prefix=".snapshot-", suffix=".tmp", dir=self.state_dir)
        temp_path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                json.dump(payload, file, indent=2)
                file.write("\n")
                file.flush()
                os.fsync(file.fileno())
            os.chmod(temp_path, 0o644)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return temp_path

    def _conflict(self) -> ConflictError:
        message = (
            "Snapshot already exists. Use --force to overwrite or run 'exit' first."
        )
        try:
            created_at = self.load().metadata.created_at
        except (NotFoundError, SnapshotFormatError):
            return ConflictError(message)
        return ConflictError(f"{message} Existing snapshot created: {created_at}")
