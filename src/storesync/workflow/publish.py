"""Publish workflow: stage, commit, fetch, integrate, push.

    Stage → Commit → SetAside → Fetch → Integrate → Push → Restore → Finish
                                  ↑         │         │        │
                                  │         ↓         │        ↓
                                  │   End(ConflictHandle)      End(ConflictHandle)
                                  └── rejected push ──┘

A conflict ends the run with a ConflictHandle; the caller resolves it
and resumes with continue_publish(), which starts again at Resolve,
Integrate or Stage depending on what is left to do.

Edits left out of a selective publish are stashed by SetAside so the
merge sees a clean tree, and put back by Restore once the push is done.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from pydantic_graph import BaseNode, End, GraphRunContext

from storesync.catalog.model import ConflictKind, Resolution
from storesync.core.errors import GitCommandError, NotAutoMergeableError
from storesync.core.log import logger
from storesync.core.result import ConflictHandle, Done, SyncOutcome
from storesync.git.status import compute_status
from storesync.merge.detector import detect_session
from storesync.merge.strategies import apply_resolution
from storesync.workflow.state import (
    PUBLISH_STASH_MESSAGE,
    PublishPhase,
    PublishState,
    SyncDeps,
    commit_message,
    has_publish_stash,
)

Ctx = GraphRunContext[PublishState, SyncDeps]


@dataclass
class Stage(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Stage the requested files, or every changed catalog."""

    async def run(self, ctx: Ctx) -> Commit:
        ctx.state.phase = PublishPhase.STAGING
        repo = ctx.deps.repo

        await asyncio.to_thread(repo.remove_stale_lock)
        status = await asyncio.to_thread(repo.status)

        paths = ctx.state.paths
        if paths is None:
            paths = [
                path for path in status.changed_files
                if path in ctx.deps.registry
            ]
            ctx.state.paths = paths
        if ctx.state.message is None:
            ctx.state.message = commit_message(status, paths)

        logger.info("Staging", files=paths)
        await asyncio.to_thread(repo.stage, paths)
        return Commit()


@dataclass
class Commit(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Commit the index; nothing staged is not an error."""

    async def run(self, ctx: Ctx) -> SetAside:
        ctx.state.phase = PublishPhase.COMMITTING
        ctx.state.commit = await asyncio.to_thread(
            ctx.deps.repo.commit, ctx.state.message
        )
        if ctx.state.commit:
            logger.info("Committed", commit=ctx.state.commit[:12])
        else:
            logger.info("Nothing to commit")
        return SetAside()


@dataclass
class SetAside(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Stash whatever was not committed, so the merge starts clean."""

    async def run(self, ctx: Ctx) -> Fetch:
        ctx.state.phase = PublishPhase.SETTING_ASIDE
        repo = ctx.deps.repo
        if not (await asyncio.to_thread(repo.status)).is_clean:
            ctx.state.set_aside = await asyncio.to_thread(
                repo.stash_push, PUBLISH_STASH_MESSAGE
            )
            logger.info("Unpublished edits set aside")
        return Fetch()


@dataclass
class Fetch(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    async def run(self, ctx: Ctx) -> Integrate:
        ctx.state.phase = PublishPhase.FETCHING
        await asyncio.to_thread(ctx.deps.repo.fetch)
        return Integrate()


@dataclass
class Integrate(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Merge the fetched remote tip into the local branch."""

    async def run(
        self, ctx: Ctx
    ) -> Push | End[SyncOutcome]:
        ctx.state.phase = PublishPhase.INTEGRATING
        repo = ctx.deps.repo

        if await asyncio.to_thread(repo.rev_parse, repo.remote_ref) is None:
            # Remote branch does not exist yet; the push creates it
            return Push()

        if not await asyncio.to_thread(repo.merge, repo.remote_ref):
            ctx.state.phase = PublishPhase.CONFLICTED
            files = await asyncio.to_thread(repo.unmerged_paths)
            logger.info("Publish paused on conflicts", files=files)
            return End(ConflictHandle(
                operation="publish",
                conflict_kind=ConflictKind.MERGE,
                conflicted_files=files,
                message=(
                    f"{len(files)} file(s) changed both locally and on "
                    f"the remote; resolve to continue publishing"
                ),
            ))
        return Push()


@dataclass
class Resolve(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Apply a Resolution to the open conflict, then integrate again."""

    resolution: Resolution

    async def run(self, ctx: Ctx) -> Integrate:
        ctx.state.phase = PublishPhase.RESOLVING
        repo = ctx.deps.repo
        session = await asyncio.to_thread(
            detect_session, repo, ctx.deps.registry
        )
        if session is None:
            return Integrate()
        try:
            await asyncio.to_thread(
                apply_resolution,
                repo, ctx.deps.registry, session, self.resolution,
            )
        except NotAutoMergeableError:
            ctx.state.phase = PublishPhase.CONFLICTED
            raise
        return Integrate()


@dataclass
class Push(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Push; a rejected push goes back to Fetch a bounded number of times."""

    async def run(self, ctx: Ctx) -> Fetch | Restore:
        ctx.state.phase = PublishPhase.PUSHING
        repo = ctx.deps.repo

        if await asyncio.to_thread(repo.rev_parse, repo.remote_ref):
            ahead, _ = await asyncio.to_thread(
                repo.ahead_behind, "HEAD", repo.remote_ref
            )
            if ahead == 0:
                logger.info("Remote already has every local commit")
                return Restore()

        try:
            await asyncio.to_thread(repo.push)
        except GitCommandError as e:
            if not e.rejected:
                raise
            if ctx.state.push_attempts >= ctx.deps.sync.push_retries:
                raise
            ctx.state.push_attempts += 1
            logger.warn(
                "Push rejected, remote moved on; fetching again",
                attempt=ctx.state.push_attempts,
            )
            return Fetch()

        ctx.state.pushed = True
        return Restore()


@dataclass
class Restore(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    """Put set-aside edits back on top of what was published."""

    async def run(self, ctx: Ctx) -> Finish | End[SyncOutcome]:
        ctx.state.phase = PublishPhase.RESTORING
        repo = ctx.deps.repo
        if not await asyncio.to_thread(has_publish_stash, repo):
            return Finish()

        if not await asyncio.to_thread(repo.stash_pop):
            ctx.state.phase = PublishPhase.CONFLICTED
            files = await asyncio.to_thread(repo.unmerged_paths)
            logger.info("Unpublished edits clash with the remote", files=files)
            return End(ConflictHandle(
                operation="publish",
                conflict_kind=ConflictKind.STASH,
                conflicted_files=files,
                message=(
                    f"{len(files)} file(s) left out of the publish were "
                    f"also changed on the remote"
                ),
            ))
        ctx.state.set_aside = False
        return Finish()


@dataclass
class Finish(BaseNode[PublishState, SyncDeps, SyncOutcome]):
    async def run(self, ctx: Ctx) -> End[SyncOutcome]:
        status = await asyncio.to_thread(
            compute_status, ctx.deps.repo, ctx.deps.registry
        )
        ctx.state.phase = PublishPhase.DONE
        duration = time.monotonic() - ctx.state.started

        if ctx.state.pushed:
            message = "Changes published"
        elif ctx.state.commit:
            message = "Committed; remote was already up to date"
        else:
            message = "Nothing to publish"
        logger.info(message, duration=round(duration, 2))

        return End(Done(
            status=status,
            message=message,
            commit=ctx.state.commit,
            pushed=ctx.state.pushed,
            duration=duration,
        ))


PUBLISH_NODES = (
    Stage, Commit, SetAside, Fetch, Integrate, Resolve, Push, Restore, Finish,
)
