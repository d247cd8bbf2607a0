"""Record- and field-level conflict detection.

When git stops with unmerged paths, each conflicted catalog is read at
its three index stages (ancestor, local, remote), the records are
matched by id, and the differences are reported per field.
"""

from __future__ import annotations

from storesync.catalog.differ import changed_fields, record_fields, values_equal
from storesync.catalog.files import (
    EXISTENCE_FIELD,
    CatalogRegistry,
    CatalogSpec,
    Record,
    index_by_id,
    parse_records,
)
from storesync.catalog.model import (
    ConflictedFile,
    ConflictKind,
    ConflictSession,
    FieldConflict,
    RecordConflict,
)
from storesync.core.log import logger
from storesync.git.repository import Repository

BASE_STAGE = 1


def side_stages(kind: ConflictKind) -> tuple[int, int]:
    """Index stages holding the (local, remote) versions.

    In a merge, "ours" (stage 2) is the local branch. A stash pop is
    applied onto the freshly pulled tip, so there stage 2 is the
    remote content and stage 3 the stashed local edits.
    """
    if kind is ConflictKind.MERGE:
        return 2, 3
    return 3, 2


def merged_order(local: list[Record], remote: list[Record]) -> list[int]:
    """Local ids in local order, then remote-only ids in remote order."""
    local_ids = [record["id"] for record in local]
    seen = set(local_ids)
    return local_ids + [
        record["id"] for record in remote if record["id"] not in seen
    ]


def _existence_conflict(
    spec: CatalogSpec,
    path: str,
    base: Record,
    local: Record | None,
    remote: Record | None,
) -> RecordConflict:
    survivor = local if local is not None else remote
    return RecordConflict(
        path=path,
        record_id=base["id"],
        record_name=spec.display_name(survivor),
        field_conflicts=[FieldConflict(
            field=EXISTENCE_FIELD,
            label=spec.label(EXISTENCE_FIELD),
            local_value=local is not None,
            remote_value=remote is not None,
        )],
        can_auto_merge=False,
    )


def compare_record(
    spec: CatalogSpec,
    path: str,
    base: Record | None,
    local: Record | None,
    remote: Record | None,
) -> RecordConflict | None:
    """The conflict for one id, or None if it merges silently.

    A record edited on one side only merges silently. Otherwise every
    field whose local and remote values differ is reported.
    canAutoMerge is False only when some field was changed on both
    sides to different values, the record was added on both sides
    with different content, or one side deleted what the other edited.
    """
    if local is None and remote is None:
        return None

    if local is None or remote is None:
        survivor = local if local is not None else remote
        if base is None or values_equal(base, survivor):
            return None
        return _existence_conflict(spec, path, base, local, remote)

    differing = [
        field for field in record_fields(local, remote)
        if not values_equal(local.get(field), remote.get(field))
    ]
    if not differing:
        return None

    if base is None:
        return RecordConflict(
            path=path,
            record_id=local["id"],
            record_name=spec.display_name(local),
            field_conflicts=[
                FieldConflict(
                    field=field,
                    label=spec.label(field),
                    local_value=local.get(field),
                    remote_value=remote.get(field),
                )
                for field in record_fields(local, remote)
            ],
            can_auto_merge=False,
        )

    ours = changed_fields(base, local)
    theirs = changed_fields(base, remote)
    if not ours or not theirs:
        # Edited on one side only
        return None
    conflicts = [
        FieldConflict(
            field=field,
            label=spec.label(field),
            local_value=local.get(field),
            remote_value=remote.get(field),
            changed_locally=field in ours,
            changed_remotely=field in theirs,
        )
        for field in differing
    ]
    return RecordConflict(
        path=path,
        record_id=local["id"],
        record_name=spec.display_name(local),
        field_conflicts=conflicts,
        can_auto_merge=not any(
            c.changed_locally and c.changed_remotely for c in conflicts
        ),
    )


def detect_records(
    spec: CatalogSpec,
    base: list[Record],
    local: list[Record],
    remote: list[Record],
) -> list[RecordConflict]:
    """RecordConflicts of one catalog, in merged record order."""
    base_by_id = index_by_id(base)
    local_by_id = index_by_id(local)
    remote_by_id = index_by_id(remote)

    conflicts = []
    for record_id in merged_order(local, remote):
        conflict = compare_record(
            spec,
            spec.path,
            base_by_id.get(record_id),
            local_by_id.get(record_id),
            remote_by_id.get(record_id),
        )
        if conflict is not None:
            conflicts.append(conflict)

    return conflicts


def inspect_file(
    repo: Repository,
    registry: CatalogRegistry,
    path: str,
    kind: ConflictKind,
) -> ConflictedFile:
    """Read the three stages of an unmerged path."""
    local_stage, remote_stage = side_stages(kind)
    conflicted = ConflictedFile(
        path=path,
        is_catalog=path in registry,
        base_text=repo.show(f":{BASE_STAGE}", path),
        local_text=repo.show(f":{local_stage}", path),
        remote_text=repo.show(f":{remote_stage}", path),
    )

    spec = registry.get(path)
    if spec is not None:
        conflicted.record_conflicts = detect_records(
            spec,
            parse_records(conflicted.base_text, f"{path} (ancestor)"),
            parse_records(conflicted.local_text, f"{path} (local)"),
            parse_records(conflicted.remote_text, f"{path} (remote)"),
        )
    return conflicted


def detect_session(
    repo: Repository, registry: CatalogRegistry
) -> ConflictSession | None:
    """The open conflict in the repository, or None if there is none.

    Recomputed from the index on every call, so it always agrees with
    git's own view of the working copy.
    """
    kind = repo.conflict_kind()
    if kind is None:
        return None

    files = [
        inspect_file(repo, registry, path, kind)
        for path in repo.unmerged_paths()
    ]
    session = ConflictSession(kind=kind, files=files)
    logger.debug(
        "Conflict session",
        kind=str(kind),
        files=session.conflicted_file_paths,
        records=len(session.all_record_conflicts),
    )
    return session
