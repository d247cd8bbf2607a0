"""Structured views over catalog changes and conflicts."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from storesync.catalog.files import EXISTENCE_FIELD, Record

# ============================================================
# CHANGES
# ============================================================

class ChangeKind(StrEnum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"

    def inverse(self) -> ChangeKind:
        return {
            ChangeKind.ADDED: ChangeKind.REMOVED,
            ChangeKind.REMOVED: ChangeKind.ADDED,
            ChangeKind.MODIFIED: ChangeKind.MODIFIED,
        }[self]


class FieldDelta(BaseModel):
    """One field whose value differs between two snapshots."""

    field: str
    label: str
    old_value: Any = None
    new_value: Any = None
    description: str = ""


class RecordChange(BaseModel):
    """Change to a single record, tagged by kind."""

    kind: ChangeKind
    path: str = Field(description="Catalog file the record lives in")
    record_id: int
    record_name: str
    description: str
    deltas: list[FieldDelta] = Field(default_factory=list)
    old_record: Record | None = None
    new_record: Record | None = None


class ChangeSet(BaseModel):
    """Record-level diff of one catalog file between two snapshots."""

    path: str
    added: list[RecordChange] = Field(default_factory=list)
    removed: list[RecordChange] = Field(default_factory=list)
    modified: list[RecordChange] = Field(default_factory=list)

    @property
    def changes(self) -> list[RecordChange]:
        return [*self.added, *self.removed, *self.modified]

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    @property
    def descriptions(self) -> list[str]:
        return [change.description for change in self.changes]

    def find(self, record_id: int) -> RecordChange | None:
        for change in self.changes:
            if change.record_id == record_id:
                return change
        return None


class FileDiffStat(BaseModel):
    """Line counts of one file's diff (from git diff --numstat)."""

    path: str
    additions: int = 0
    deletions: int = 0
    binary: bool = False


class RepoStatus(BaseModel):
    """Working tree against the last commit, plus branch tracking."""

    clean: bool
    branch: str | None = None
    tracking: str | None = None
    ahead: int = 0
    behind: int = 0
    modified: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    renamed: list[str] = Field(default_factory=list)
    conflicted: list[str] = Field(default_factory=list)
    changesets: dict[str, ChangeSet] = Field(default_factory=dict)

    @property
    def changed_files(self) -> list[str]:
        return [
            *self.modified, *self.added, *self.deleted,
            *self.renamed, *self.conflicted,
        ]

    @property
    def record_changes(self) -> list[RecordChange]:
        return [
            change
            for changeset in self.changesets.values()
            for change in changeset.changes
        ]


class RemoteChanges(BaseModel):
    """How the local branch relates to its remote-tracking branch."""

    has_remote_changes: bool
    ahead_by: int
    behind_by: int
    files: list[FileDiffStat] = Field(default_factory=list)
    changesets: dict[str, ChangeSet] = Field(default_factory=dict)

    @property
    def up_to_date(self) -> bool:
        return self.ahead_by == 0 and self.behind_by == 0

    @property
    def message(self) -> str:
        if self.behind_by:
            return f"{self.behind_by} new change(s) available"
        return "Your local copy is up to date"


class PotentialConflict(BaseModel):
    """A record edited both locally and remotely since they diverged."""

    path: str
    record_id: int
    record_name: str
    local_fields: list[str]
    remote_fields: list[str]

    @property
    def overlapping_fields(self) -> list[str]:
        local, remote = set(self.local_fields), set(self.remote_fields)
        # Deleted on one side, edited on the other
        if EXISTENCE_FIELD in local | remote:
            return sorted(local | remote)
        return sorted(local & remote)


class ConflictPreview(BaseModel):
    has_local_changes: bool
    has_remote_changes: bool
    diverged: bool
    records: list[PotentialConflict] = Field(default_factory=list)

    @property
    def potential_conflicts(self) -> bool:
        return any(record.overlapping_fields for record in self.records)


# ============================================================
# CONFLICTS
# ============================================================

class ConflictKind(StrEnum):
    """Which interrupted operation left the repository unmerged."""

    MERGE = "merge"
    STASH = "stash"


class FieldConflict(BaseModel):
    field: str
    label: str
    local_value: Any = None
    remote_value: Any = None
    changed_locally: bool = True
    changed_remotely: bool = True


class RecordConflict(BaseModel):
    path: str
    record_id: int
    record_name: str
    field_conflicts: list[FieldConflict]
    can_auto_merge: bool

    def field(self, name: str) -> FieldConflict | None:
        for conflict in self.field_conflicts:
            if conflict.field == name:
                return conflict
        return None


class ConflictedFile(BaseModel):
    """The three index stages of one unmerged path."""

    path: str
    is_catalog: bool
    base_text: str | None = Field(default=None, repr=False)
    local_text: str | None = Field(default=None, repr=False)
    remote_text: str | None = Field(default=None, repr=False)
    record_conflicts: list[RecordConflict] = Field(default_factory=list)


class ConflictSession(BaseModel):
    """Open, unresolved integration; mirrors the repository's index."""

    kind: ConflictKind
    files: list[ConflictedFile]
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def conflicted_file_paths(self) -> list[str]:
        return [f.path for f in self.files]

    @property
    def record_conflicts(self) -> dict[str, list[RecordConflict]]:
        return {f.path: f.record_conflicts for f in self.files}

    @property
    def all_record_conflicts(self) -> list[RecordConflict]:
        return [c for f in self.files for c in f.record_conflicts]

    @property
    def can_auto_merge(self) -> bool:
        return all(f.is_catalog for f in self.files) and all(
            c.can_auto_merge for c in self.all_record_conflicts
        )

    @property
    def message(self) -> str:
        records = self.all_record_conflicts
        if records:
            return f"{len(records)} record(s) have conflicts"
        return f"{len(self.files)} file(s) have conflicts"


class ResolutionMethod(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"
    SMART_MERGE = "smart_merge"
    CUSTOM = "custom"


class FieldSelection(BaseModel):
    """Pick the local or remote value of one field of one record.

    ``path`` narrows the selection to one catalog file when the same
    id exists in several; None applies it to every conflicted file.
    """

    record_id: int
    field: str
    use_local: bool
    path: str | None = None


class Resolution(BaseModel):
    method: ResolutionMethod
    field_selections: list[FieldSelection] = Field(default_factory=list)
