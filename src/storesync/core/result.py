"""Outcomes returned by the sync workflows."""

from typing import Literal

from pydantic import BaseModel, Field

from storesync.catalog.model import ConflictKind, RepoStatus


class Done(BaseModel):
    """The workflow ran to completion."""

    kind: Literal["done"] = "done"
    status: RepoStatus
    message: str = ""
    commit: str | None = Field(
        default=None, description="Commit created by this run, if any"
    )
    pushed: bool = False
    duration: float = Field(default=0.0, description="Seconds")


class ConflictHandle(BaseModel):
    """The workflow paused on unmerged catalog changes.

    Fetch the details with get_conflict_details() and hand a
    Resolution back to resolve the session.
    """

    kind: Literal["conflict"] = "conflict"
    operation: Literal["publish", "pull"]
    conflict_kind: ConflictKind
    conflicted_files: list[str]
    message: str = ""


class NeedsDecision(BaseModel):
    """Pull found local edits and was not told what to do with them."""

    kind: Literal["needs_decision"] = "needs_decision"
    changed_files: list[str]
    message: str = (
        "Local changes found; choose stash, commit or force to continue"
    )


SyncOutcome = Done | ConflictHandle | NeedsDecision


class RemoteCheck(BaseModel):
    """Whether the working copy points at the expected remote."""

    matches: bool
    current_url: str | None = None
