"""Resolution strategies for an open ConflictSession.

Keep-Local and Keep-Remote take one side of every conflicted file
wholesale. Smart-Merge unions non-overlapping field edits. Custom
applies explicit per-field choices. All four stage the result and
conclude the interrupted merge or stash pop.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from storesync.catalog.differ import changed_fields, record_fields
from storesync.catalog.files import (
    EXISTENCE_FIELD,
    CatalogRegistry,
    Record,
    dump_records,
    index_by_id,
    parse_records,
)
from storesync.catalog.model import (
    ConflictedFile,
    ConflictKind,
    ConflictSession,
    FieldSelection,
    RecordConflict,
    Resolution,
    ResolutionMethod,
)
from storesync.core.errors import CatalogIOError, NotAutoMergeableError
from storesync.core.log import logger
from storesync.git.repository import Repository
from storesync.merge.detector import merged_order, side_stages

# (record_id, field) -> True to keep the local value
Chooser = Callable[[int, str], bool]


def _apply_fields(target: Record, source: Record, fields) -> None:
    """Copy fields from source, deleting those source does not have."""
    for field in fields:
        if field in source:
            target[field] = source[field]
        else:
            target.pop(field, None)


def three_way_record(base: Record, local: Record, remote: Record) -> Record:
    """Ancestor, then local's changed fields, then remote's.

    Only meaningful when the two change sets do not collide; fields
    both sides changed to the same value are written twice with the
    same result.
    """
    merged = dict(base)
    ours = changed_fields(base, local)
    theirs = changed_fields(base, remote) - ours
    fields = record_fields(local, remote, base)
    _apply_fields(merged, local, [f for f in fields if f in ours])
    _apply_fields(merged, remote, [f for f in fields if f in theirs])
    return merged


def pick_fields(
    local: Record,
    remote: Record,
    conflict: RecordConflict,
    keep_local: Callable[[str], bool],
) -> Record:
    """Local record with the chosen conflicting fields taken from remote."""
    merged = dict(local)
    for field_conflict in conflict.field_conflicts:
        if not keep_local(field_conflict.field):
            _apply_fields(merged, remote, [field_conflict.field])
    return merged


def silent_merge(
    base: Record | None, local: Record | None, remote: Record | None
) -> Record | None:
    """Merge a record that has no RecordConflict; None means deleted."""
    if local is None and remote is None:
        return None
    if local is None:
        # Deleted locally, untouched remotely, or added remotely
        return remote if base is None else None
    if remote is None:
        return local if base is None else None
    if base is None:
        return local
    return three_way_record(base, local, remote)


def merge_catalog(
    base: list[Record],
    local: list[Record],
    remote: list[Record],
    conflicts: list[RecordConflict],
    choose: Chooser | None = None,
) -> list[Record]:
    """Merge three snapshots of one catalog into a record list.

    Args:
        base: Common ancestor records
        local: Local records
        remote: Remote records
        conflicts: RecordConflicts detected for this catalog
        choose: Per-field chooser for conflicted records; None merges
            them three-way, which requires every one of them to be
            auto-mergeable

    Returns:
        Records in local order, remote-only additions appended

    Raises:
        NotAutoMergeableError: choose is None and a conflict is not
            auto-mergeable
    """
    if choose is None:
        refused = [c for c in conflicts if not c.can_auto_merge]
        if refused:
            names = ", ".join(c.record_name for c in refused)
            raise NotAutoMergeableError(
                f"Not auto-mergeable: {names} changed on both sides"
            )

    base_by_id = index_by_id(base)
    local_by_id = index_by_id(local)
    remote_by_id = index_by_id(remote)
    conflict_by_id = {c.record_id: c for c in conflicts}

    merged = []
    for record_id in merged_order(local, remote):
        a = base_by_id.get(record_id)
        ours = local_by_id.get(record_id)
        theirs = remote_by_id.get(record_id)
        conflict = conflict_by_id.get(record_id)

        if conflict is None:
            record = silent_merge(a, ours, theirs)
        elif choose is None:
            record = three_way_record(a, ours, theirs)
        elif conflict.field(EXISTENCE_FIELD) is not None:
            record = ours if choose(record_id, EXISTENCE_FIELD) else theirs
        else:
            record = pick_fields(
                ours, theirs, conflict,
                lambda field, rid=record_id: choose(rid, field),
            )

        if record is not None:
            merged.append(record)
    return merged


def selection_chooser(
    path: str, selections: list[FieldSelection]
) -> Chooser:
    """Chooser over explicit selections; anything unselected stays local."""
    picks = {}
    for selection in selections:
        if selection.path is None or selection.path == path:
            picks[(selection.record_id, selection.field)] = selection.use_local
    return lambda record_id, field: picks.get((record_id, field), True)


def _write(repo: Repository, path: str, text: str) -> None:
    target = repo.workdir / Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    except OSError as e:
        raise CatalogIOError(f"Cannot write {target}: {e}") from e
    repo.stage([path])


def _take_side(
    repo: Repository, kind: ConflictKind, conflicted: ConflictedFile,
    use_local: bool,
) -> None:
    """Replace one file wholesale with a side, straight from the index.

    Going through git keeps binary files such as product images intact.
    """
    local_stage, remote_stage = side_stages(kind)
    text = conflicted.local_text if use_local else conflicted.remote_text
    if text is None:
        # That side deleted the file
        repo.remove_file(conflicted.path)
        return
    repo.checkout_stage(
        conflicted.path, local_stage if use_local else remote_stage
    )


def _merge_file(
    registry: CatalogRegistry,
    conflicted: ConflictedFile,
    resolution: Resolution,
) -> str:
    """Record-level merge of one catalog (Smart-Merge or Custom)."""
    method = resolution.method
    spec = registry.get(conflicted.path)
    base = parse_records(conflicted.base_text, conflicted.path)
    local = parse_records(conflicted.local_text, conflicted.path)
    remote = parse_records(conflicted.remote_text, conflicted.path)

    choose = None
    if method is ResolutionMethod.CUSTOM:
        choose = selection_chooser(spec.path, resolution.field_selections)
    records = merge_catalog(
        base, local, remote, conflicted.record_conflicts, choose
    )
    return dump_records(records)


def check_applicable(session: ConflictSession, resolution: Resolution) -> None:
    """Refuse a resolution up front, before anything is written.

    Raises:
        NotAutoMergeableError: Smart-Merge on a session with a record
            that is not auto-mergeable, or Smart-Merge/Custom on a
            session with conflicted files that are not catalogs
    """
    if resolution.method in (ResolutionMethod.LOCAL, ResolutionMethod.REMOTE):
        return

    others = [f.path for f in session.files if not f.is_catalog]
    if others:
        raise NotAutoMergeableError(
            f"{', '.join(others)} cannot be merged record by record; "
            f"keep the local or the remote version"
        )
    if resolution.method is ResolutionMethod.SMART_MERGE:
        refused = [
            c for c in session.all_record_conflicts if not c.can_auto_merge
        ]
        if refused:
            names = ", ".join(c.record_name for c in refused)
            raise NotAutoMergeableError(
                f"Not auto-mergeable: {names} changed on both sides"
            )


def finalize(repo: Repository, kind: ConflictKind) -> str | None:
    """Conclude the interrupted operation once everything is staged.

    A merge is committed. A stash pop leaves the resolved content as
    ordinary working-tree edits and drops the stash it came from.
    """
    if kind is ConflictKind.MERGE:
        return repo.commit_merge()
    repo.unstage()
    repo.stash_drop()
    return None


def apply_resolution(
    repo: Repository,
    registry: CatalogRegistry,
    session: ConflictSession,
    resolution: Resolution,
) -> str | None:
    """Resolve every conflicted file of session and finalize.

    Returns:
        The merge commit id, or None for a stash pop
    """
    check_applicable(session, resolution)

    wholesale = resolution.method in (
        ResolutionMethod.LOCAL, ResolutionMethod.REMOTE
    )
    # Everything is computed before the first write
    contents = {} if wholesale else {
        conflicted.path: _merge_file(registry, conflicted, resolution)
        for conflicted in session.files
    }

    repo.remove_stale_lock()
    if wholesale:
        use_local = resolution.method is ResolutionMethod.LOCAL
        for conflicted in session.files:
            _take_side(repo, session.kind, conflicted, use_local)
    else:
        for path, text in contents.items():
            _write(repo, path, text)
    logger.info(
        "Conflict resolved",
        method=str(resolution.method),
        files=session.conflicted_file_paths,
    )
    return finalize(repo, session.kind)

