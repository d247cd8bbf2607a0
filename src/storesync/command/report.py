"""Plain-text rendering of sync results for the terminal."""

from __future__ import annotations

from storesync.catalog.model import (
    ChangeSet,
    ConflictPreview,
    ConflictSession,
    RemoteChanges,
    RepoStatus,
)
from storesync.core.errors import SyncError
from storesync.core.result import ConflictHandle, Done, NeedsDecision, SyncOutcome

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFLICT = 2
EXIT_NEEDS_DECISION = 3


def exit_code(outcome: SyncOutcome) -> int:
    if isinstance(outcome, ConflictHandle):
        return EXIT_CONFLICT
    if isinstance(outcome, NeedsDecision):
        return EXIT_NEEDS_DECISION
    return EXIT_OK


def format_changeset(changeset: ChangeSet) -> list[str]:
    return [f"  {changeset.path}"] + [
        f"    {description}" for description in changeset.descriptions
    ]


def format_status(status: RepoStatus) -> list[str]:
    lines = []
    branch = status.branch or "(no branch)"
    if status.tracking:
        branch += f" → {status.tracking}"
    if status.ahead or status.behind:
        branch += f" [ahead {status.ahead}, behind {status.behind}]"
    lines.append(f"On {branch}")

    if status.clean:
        lines.append("No local changes")
        return lines

    for label, paths in (
        ("Modified", status.modified),
        ("Added", status.added),
        ("Deleted", status.deleted),
        ("Renamed", status.renamed),
        ("Conflicted", status.conflicted),
    ):
        for path in paths:
            lines.append(f"  {label:<10} {path}")
    for changeset in status.changesets.values():
        lines.extend(format_changeset(changeset))
    return lines


def format_remote(changes: RemoteChanges) -> list[str]:
    lines = [changes.message]
    if changes.ahead_by:
        lines.append(f"{changes.ahead_by} local commit(s) not published")
    for stat in changes.files:
        lines.append(f"  {stat.path} +{stat.additions} -{stat.deletions}")
    for changeset in changes.changesets.values():
        lines.extend(format_changeset(changeset))
    return lines


def format_preview(preview: ConflictPreview) -> list[str]:
    if not preview.diverged:
        return ["No conflicts expected"]
    if not preview.potential_conflicts:
        return ["Local and remote both changed, but no record overlaps"]
    lines = ["These records were changed both locally and remotely:"]
    for record in preview.records:
        if record.overlapping_fields:
            fields = ", ".join(record.overlapping_fields)
            lines.append(f"  {record.path} #{record.record_id} "
                         f"{record.record_name}: {fields}")
    return lines


def format_session(session: ConflictSession | None) -> list[str]:
    if session is None:
        return ["No conflicts"]
    lines = [f"{session.message} ({session.kind})"]
    for conflicted in session.files:
        if not conflicted.is_catalog:
            lines.append(f"  {conflicted.path} (not a catalog; keep local or remote)")
            continue
        lines.append(f"  {conflicted.path}")
        for record in conflicted.record_conflicts:
            merge = "auto-mergeable" if record.can_auto_merge else "needs a choice"
            lines.append(
                f"    #{record.record_id} {record.record_name} ({merge})"
            )
            for field in record.field_conflicts:
                lines.append(
                    f"      {field.label}: local={field.local_value!r} "
                    f"remote={field.remote_value!r}"
                )
    return lines


def format_outcome(outcome: SyncOutcome) -> list[str]:
    if isinstance(outcome, ConflictHandle):
        return [
            outcome.message,
            *(f"  {path}" for path in outcome.conflicted_files),
            "Run 'storesync conflicts' for details",
        ]
    if isinstance(outcome, NeedsDecision):
        return [
            outcome.message,
            *(f"  {path}" for path in outcome.changed_files),
        ]
    assert isinstance(outcome, Done)
    lines = [outcome.message]
    if outcome.commit:
        lines.append(f"Commit {outcome.commit[:12]}")
    return lines + format_status(outcome.status)


def format_error(error: SyncError) -> str:
    return f"error ({error.error_class}): {error.message}"


def emit(lines: list[str]) -> None:
    print("\n".join(lines))
