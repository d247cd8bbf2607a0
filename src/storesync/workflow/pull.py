"""Pull workflow: fetch, look at local edits, integrate.

    FetchRemote → CheckLocal ─ clean ───────────────→ Integrate → Finish
                      │                                  │   ↑
                      ├ auto   → End(NeedsDecision)      │   │
                      ├ stash  → Stash ───────→ Integrate → Unstash
                      ├ commit → AutoCommit ──→ Integrate
                      └ force  → Discard ─────────────────→ Finish

Integrate and Unstash end with a ConflictHandle when git stops on
unmerged paths.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from pydantic_graph import BaseNode, End, GraphRunContext

from storesync.catalog.model import ConflictKind
from storesync.core.log import logger
from storesync.core.result import (
    ConflictHandle,
    Done,
    NeedsDecision,
    SyncOutcome,
)
from storesync.git.status import compute_status
from storesync.workflow.state import (
    PULL_STASH_MESSAGE,
    PullPhase,
    PullState,
    PullStrategy,
    SyncDeps,
    commit_message,
)

Ctx = GraphRunContext[PullState, SyncDeps]


def _conflict(ctx: Ctx, kind: ConflictKind, files: list[str]) -> End[SyncOutcome]:
    ctx.state.phase = PullPhase.CONFLICTED
    logger.info("Pull paused on conflicts", kind=str(kind), files=files)
    return End(ConflictHandle(
        operation="pull",
        conflict_kind=kind,
        conflicted_files=files,
        message=(
            f"{len(files)} file(s) have local and remote edits that "
            f"need a decision"
        ),
    ))


@dataclass
class FetchRemote(BaseNode[PullState, SyncDeps, SyncOutcome]):
    async def run(self, ctx: Ctx) -> CheckLocal:
        ctx.state.phase = PullPhase.FETCHING
        await asyncio.to_thread(ctx.deps.repo.fetch)
        return CheckLocal()


@dataclass
class CheckLocal(BaseNode[PullState, SyncDeps, SyncOutcome]):
    """Dispatch on local edits and the chosen strategy."""

    async def run(
        self, ctx: Ctx
    ) -> Integrate | Stash | AutoCommit | Discard | End[SyncOutcome]:
        ctx.state.phase = PullPhase.CHECKING_LOCAL
        status = await asyncio.to_thread(ctx.deps.repo.status)
        ctx.state.changed_files = status.changed_files
        strategy = ctx.state.strategy

        if strategy is PullStrategy.FORCE:
            return Discard()
        if status.is_clean:
            return Integrate()

        logger.info(
            "Local changes found",
            files=ctx.state.changed_files,
            strategy=str(strategy),
        )
        if strategy is PullStrategy.STASH:
            return Stash()
        if strategy is PullStrategy.COMMIT:
            return AutoCommit()

        ctx.state.phase = PullPhase.NEEDS_DECISION
        return End(NeedsDecision(changed_files=ctx.state.changed_files))


@dataclass
class Stash(BaseNode[PullState, SyncDeps, SyncOutcome]):
    async def run(self, ctx: Ctx) -> Integrate:
        ctx.state.phase = PullPhase.STASHING
        repo = ctx.deps.repo
        await asyncio.to_thread(repo.remove_stale_lock)
        ctx.state.stashed = await asyncio.to_thread(
            repo.stash_push, PULL_STASH_MESSAGE
        )
        return Integrate()


@dataclass
class AutoCommit(BaseNode[PullState, SyncDeps, SyncOutcome]):
    """Commit local edits so the pull merges two ordinary commits."""

    async def run(self, ctx: Ctx) -> Integrate:
        ctx.state.phase = PullPhase.COMMITTING
        repo = ctx.deps.repo
        await asyncio.to_thread(repo.remove_stale_lock)
        status = await asyncio.to_thread(repo.status)
        await asyncio.to_thread(repo.stage)
        ctx.state.commit = await asyncio.to_thread(
            repo.commit, commit_message(status)
        )
        return Integrate()


@dataclass
class Discard(BaseNode[PullState, SyncDeps, SyncOutcome]):
    """Throw away every local edit and match the remote tip."""

    async def run(self, ctx: Ctx) -> Finish:
        ctx.state.phase = PullPhase.DISCARDING
        repo = ctx.deps.repo
        await asyncio.to_thread(repo.remove_stale_lock)
        target = repo.remote_ref
        if await asyncio.to_thread(repo.rev_parse, target) is None:
            target = "HEAD"
        logger.warn(
            "Discarding local changes",
            files=ctx.state.changed_files,
            target=target,
        )
        await asyncio.to_thread(repo.reset, "hard", target)
        await asyncio.to_thread(repo.clean)
        return Finish()


@dataclass
class Integrate(BaseNode[PullState, SyncDeps, SyncOutcome]):
    async def run(self, ctx: Ctx) -> Unstash | Finish | End[SyncOutcome]:
        ctx.state.phase = PullPhase.INTEGRATING
        repo = ctx.deps.repo

        if await asyncio.to_thread(repo.rev_parse, repo.remote_ref) is not None:
            if not await asyncio.to_thread(repo.merge, repo.remote_ref):
                files = await asyncio.to_thread(repo.unmerged_paths)
                return _conflict(ctx, ConflictKind.MERGE, files)

        if ctx.state.stashed:
            return Unstash()
        return Finish()


@dataclass
class Unstash(BaseNode[PullState, SyncDeps, SyncOutcome]):
    """Put stashed local edits back on top of the pulled tip."""

    async def run(self, ctx: Ctx) -> Finish | End[SyncOutcome]:
        ctx.state.phase = PullPhase.RESTORING
        repo = ctx.deps.repo
        if not await asyncio.to_thread(repo.stash_pop):
            files = await asyncio.to_thread(repo.unmerged_paths)
            return _conflict(ctx, ConflictKind.STASH, files)
        ctx.state.stashed = False
        return Finish()


@dataclass
class Finish(BaseNode[PullState, SyncDeps, SyncOutcome]):
    async def run(self, ctx: Ctx) -> End[SyncOutcome]:
        status = await asyncio.to_thread(
            compute_status, ctx.deps.repo, ctx.deps.registry
        )
        ctx.state.phase = PullPhase.DONE
        duration = time.monotonic() - ctx.state.started
        logger.info("Pull complete", duration=round(duration, 2))
        return End(Done(
            status=status,
            message="Pulled latest changes",
            commit=ctx.state.commit,
            duration=duration,
        ))


PULL_NODES = (
    FetchRemote, CheckLocal, Stash, AutoCommit, Discard,
    Integrate, Unstash, Finish,
)
