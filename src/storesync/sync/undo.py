"""Restore a file, or undo a single record change, in the working tree."""

from __future__ import annotations

from storesync.catalog.files import (
    CatalogRegistry,
    index_by_id,
    parse_records,
    read_catalog,
    write_catalog,
)
from storesync.catalog.model import ChangeKind, RecordChange
from storesync.core.errors import CatalogIOError
from storesync.core.log import logger
from storesync.git.repository import Repository


def restore_file(repo: Repository, path: str) -> None:
    """Reset one file to its last committed content.

    A file that is not in HEAD (new and never committed) is removed.
    Other pending edits are left alone; restoring a clean file is a
    no-op.
    """
    if repo.show("HEAD", path) is None:
        target = repo.workdir / path
        repo.remove_file(path)
        target.unlink(missing_ok=True)
        logger.info("Removed uncommitted file", path=path)
        return
    repo.checkout_file(path, "HEAD")
    logger.info("Restored file", path=path)


def undo_change(
    repo: Repository, registry: CatalogRegistry, change: RecordChange
) -> None:
    """Re-apply the inverse of one record change to the working copy.

    Added records are removed, removed records are put back (after
    the record that preceded them, when it is still there), and
    modified records get the old values of the changed fields back.
    Every other pending change in the file is kept.

    Raises:
        CatalogIOError: The catalog is unknown, unreadable, or the
            record is not in the state the change describes
    """
    spec = registry.get(change.path)
    if spec is None:
        raise CatalogIOError(f"{change.path} is not a catalog file")

    path = repo.workdir / spec.path
    records = read_catalog(path) or []
    by_id = index_by_id(records)

    if change.kind is ChangeKind.ADDED:
        if change.record_id not in by_id:
            raise CatalogIOError(
                f"{spec.noun} {change.record_id} is no longer in {spec.path}"
            )
        records = [r for r in records if r["id"] != change.record_id]

    elif change.kind is ChangeKind.REMOVED:
        if change.record_id in by_id:
            raise CatalogIOError(
                f"{spec.noun} {change.record_id} already exists in {spec.path}"
            )
        if change.old_record is None:
            raise CatalogIOError("Removed change carries no old record")
        records.insert(
            _restore_position(repo, spec.path, change.record_id, records),
            change.old_record,
        )

    else:
        current = by_id.get(change.record_id)
        if current is None:
            raise CatalogIOError(
                f"{spec.noun} {change.record_id} is no longer in {spec.path}"
            )
        for delta in change.deltas:
            old = change.old_record
            if old is not None and delta.field not in old:
                current.pop(delta.field, None)
            else:
                current[delta.field] = delta.old_value

    write_catalog(path, records)
    logger.info(
        "Undid change",
        path=spec.path,
        record=change.record_id,
        kind=str(change.kind),
    )


def _restore_position(
    repo: Repository, path: str, record_id: int, records: list
) -> int:
    """Index at which a removed record goes back: after its old neighbour."""
    committed = parse_records(repo.show("HEAD", path), f"HEAD:{path}")
    ids = [r["id"] for r in committed]
    if record_id not in ids:
        return len(records)
    current_ids = [r["id"] for r in records]
    for previous in reversed(ids[:ids.index(record_id)]):
        if previous in current_ids:
            return current_ids.index(previous) + 1
    return 0

