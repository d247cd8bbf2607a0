"""Runtime state and dependencies of the sync workflows."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum

from pydantic import Field

from storesync.catalog.files import CatalogRegistry
from storesync.core.base import BaseState
from storesync.core.config import SyncConfig
from storesync.git.porcelain import GitStatus
from storesync.git.repository import Repository


class PublishPhase(StrEnum):
    IDLE = "idle"
    STAGING = "staging"
    COMMITTING = "committing"
    SETTING_ASIDE = "setting_aside"
    FETCHING = "fetching"
    INTEGRATING = "integrating"
    CONFLICTED = "conflicted"
    RESOLVING = "resolving"
    PUSHING = "pushing"
    RESTORING = "restoring"
    DONE = "done"
    FAILED = "failed"


class PullPhase(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    CHECKING_LOCAL = "checking_local"
    STASHING = "stashing"
    COMMITTING = "committing"
    DISCARDING = "discarding"
    INTEGRATING = "integrating"
    RESTORING = "restoring"
    CONFLICTED = "conflicted"
    NEEDS_DECISION = "needs_decision"
    DONE = "done"
    FAILED = "failed"


class PullStrategy(StrEnum):
    """What to do with local edits before pulling."""

    AUTO = "auto"
    STASH = "stash"
    COMMIT = "commit"
    FORCE = "force"


# Message of stashes created by the pull workflow; a stash left behind
# by an interrupted pull is recognised by it
PULL_STASH_MESSAGE = "storesync: local edits before pull"

# Edits a selective publish leaves out, set aside while it integrates
PUBLISH_STASH_MESSAGE = "storesync: unpublished edits"


def has_publish_stash(repo: Repository) -> bool:
    """Whether the newest stash holds edits a publish set aside."""
    messages = repo.stash_messages()
    return bool(messages) and PUBLISH_STASH_MESSAGE in messages[0]


@dataclass
class SyncDeps:
    """Collaborators shared by every node of a run."""

    repo: Repository
    registry: CatalogRegistry
    sync: SyncConfig


class PublishState(BaseState):
    """Publish workflow runtime state (mutates during execution)."""

    phase: PublishPhase = PublishPhase.IDLE
    message: str | None = Field(
        default=None, description="Commit message; generated when unset"
    )
    paths: list[str] | None = Field(
        default=None, description="Files to publish; all catalogs when unset"
    )
    commit: str | None = Field(
        default=None, description="Commit created by this run"
    )
    pushed: bool = False
    push_attempts: int = 0
    set_aside: bool = Field(
        default=False, description="Unpublished edits were stashed"
    )
    started: float = Field(default_factory=time.monotonic)


class PullState(BaseState):
    """Pull workflow runtime state (mutates during execution)."""

    phase: PullPhase = PullPhase.IDLE
    strategy: PullStrategy = PullStrategy.AUTO
    changed_files: list[str] = Field(default_factory=list)
    stashed: bool = False
    commit: str | None = None
    started: float = Field(default_factory=time.monotonic)


def commit_message(status: GitStatus, paths: list[str] | None = None) -> str:
    """Generated commit message summarising the files being committed."""
    def count(files: list[str]) -> int:
        return len([f for f in files if paths is None or f in paths])

    added = count(status.added) + count(status.untracked)
    modified = count(status.modified) + count(status.renamed)
    deleted = count(status.deleted)

    parts = []
    if added:
        parts.append(f"Added {added} file(s)")
    if modified:
        parts.append(f"Modified {modified} file(s)")
    if deleted:
        parts.append(f"Deleted {deleted} file(s)")
    summary = ", ".join(parts) or "No file changes"
    return f"Update catalog via storesync: {summary}"
