"""Status and diff engine: record-level views of repository state."""

from __future__ import annotations

from storesync.catalog.differ import diff_records
from storesync.catalog.files import (
    EXISTENCE_FIELD,
    CatalogRegistry,
    CatalogSpec,
    parse_records,
    read_catalog,
)
from storesync.catalog.model import (
    ChangeKind,
    ChangeSet,
    ConflictPreview,
    PotentialConflict,
    RecordChange,
    RemoteChanges,
    RepoStatus,
)
from storesync.core.log import logger
from storesync.git.repository import Repository

# Pseudo-ref for the files on disk
WORKTREE = "<worktree>"


def snapshot(repo: Repository, spec: CatalogSpec, ref: str):
    """Records of one catalog at ref, or in the working tree."""
    if ref == WORKTREE:
        return read_catalog(repo.workdir / spec.path) or []
    return parse_records(repo.show(ref, spec.path), f"{ref}:{spec.path}")


def compare(
    repo: Repository,
    registry: CatalogRegistry,
    old_ref: str,
    new_ref: str,
    paths: list[str],
) -> dict[str, ChangeSet]:
    """ChangeSets for the catalog files among paths.

    A catalog missing at either end is treated as empty, so every
    record reads as added or removed. Non-catalog paths are skipped.
    """
    changesets = {}
    for path in paths:
        spec = registry.get(path)
        if spec is None:
            continue
        changeset = diff_records(
            spec,
            snapshot(repo, spec, old_ref),
            snapshot(repo, spec, new_ref),
        )
        if not changeset.is_empty:
            changesets[spec.path] = changeset
    return changesets


def compute_status(repo: Repository, registry: CatalogRegistry) -> RepoStatus:
    """Working tree against HEAD, with record detail for catalogs."""
    git_status = repo.status()
    head = "HEAD" if repo.rev_parse("HEAD") else None

    changed = [
        path for path in (
            *git_status.modified, *git_status.added, *git_status.deleted,
            *git_status.renamed, *git_status.untracked,
        )
        if path not in git_status.conflicted
    ]
    changesets = {}
    for path in changed:
        spec = registry.get(path)
        if spec is None:
            continue
        old = snapshot(repo, spec, head) if head else []
        changeset = diff_records(spec, old, snapshot(repo, spec, WORKTREE))
        if not changeset.is_empty:
            changesets[spec.path] = changeset

    return RepoStatus(
        clean=git_status.is_clean,
        branch=git_status.branch,
        tracking=git_status.tracking,
        ahead=git_status.ahead,
        behind=git_status.behind,
        modified=git_status.modified,
        added=[*git_status.added, *git_status.untracked],
        deleted=git_status.deleted,
        renamed=git_status.renamed,
        conflicted=git_status.conflicted,
        changesets=changesets,
    )


def remote_changes(repo: Repository, registry: CatalogRegistry) -> RemoteChanges:
    """What the remote-tracking branch has that HEAD does not.

    Reads only local refs; fetch first to see the latest remote tip.
    """
    if repo.rev_parse(repo.remote_ref) is None:
        logger.debug("No remote-tracking branch yet", ref=repo.remote_ref)
        return RemoteChanges(has_remote_changes=False, ahead_by=0, behind_by=0)

    ahead, behind = repo.ahead_behind("HEAD", repo.remote_ref)
    files = []
    changesets = {}
    if behind:
        base = repo.merge_base("HEAD", repo.remote_ref)
        if base:
            files = repo.diff_numstat(base, repo.remote_ref)
            changesets = compare(
                repo, registry, base, repo.remote_ref,
                [f.path for f in files],
            )

    return RemoteChanges(
        has_remote_changes=behind > 0,
        ahead_by=ahead,
        behind_by=behind,
        files=files,
        changesets=changesets,
    )


def _touched_fields(change: RecordChange) -> list[str]:
    if change.kind is ChangeKind.MODIFIED:
        return [delta.field for delta in change.deltas]
    return [EXISTENCE_FIELD]


def potential_conflicts(
    repo: Repository, registry: CatalogRegistry
) -> ConflictPreview:
    """Records edited on both sides since local and remote diverged.

    Local edits are everything between the merge base and the working
    tree (unpushed commits plus uncommitted edits); remote edits are
    the merge base against the remote-tracking tip.
    """
    git_status = repo.status()
    has_remote = repo.rev_parse(repo.remote_ref) is not None
    ahead, behind = (
        repo.ahead_behind("HEAD", repo.remote_ref) if has_remote else (0, 0)
    )
    has_local_changes = not git_status.is_clean or ahead > 0
    has_remote_changes = behind > 0

    preview = ConflictPreview(
        has_local_changes=has_local_changes,
        has_remote_changes=has_remote_changes,
        diverged=has_local_changes and has_remote_changes,
    )
    if not preview.diverged:
        return preview

    base = repo.merge_base("HEAD", repo.remote_ref)
    if base is None:
        return preview
    paths = registry.paths
    local = compare(repo, registry, base, WORKTREE, paths)
    remote = compare(repo, registry, base, repo.remote_ref, paths)

    for path, local_changes in local.items():
        theirs_by_id = remote.get(path)
        if theirs_by_id is None:
            continue
        for change in local_changes.changes:
            theirs = theirs_by_id.find(change.record_id)
            if theirs is None:
                continue
            if change.kind is theirs.kind is ChangeKind.REMOVED:
                continue
            preview.records.append(PotentialConflict(
                path=path,
                record_id=change.record_id,
                record_name=change.record_name,
                local_fields=_touched_fields(change),
                remote_fields=_touched_fields(theirs),
            ))

    return preview
