"""Storage package utilities."""

__all__ = ["SnapshotStore", "probe"]


def __getattr__(name: str):
    if name == "SnapshotStore":
        from storage.snapshots import SnapshotStore

        return SnapshotStore
    if name == "probe":
        from storage.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
