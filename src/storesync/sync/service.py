"""CatalogSync: the operations a UI or the CLI calls.

Every method is a coroutine. Blocking git work runs in worker threads,
so an event loop driving a UI is never stalled. Publish, pull and
conflict resolution hold the repository's lock for their whole run;
a second one started meanwhile fails with BusyError. Read-only
queries never take the lock.
"""

from __future__ import annotations

import asyncio

from storesync.catalog.files import CatalogRegistry
from storesync.catalog.model import (
    ConflictPreview,
    ConflictSession,
    FieldSelection,
    RecordChange,
    RemoteChanges,
    RepoStatus,
    Resolution,
    ResolutionMethod,
)
from storesync.core.config import Config, SyncConfig
from storesync.core.errors import BusyError, SyncError
from storesync.core.log import logger
from storesync.core.result import Done, RemoteCheck, SyncOutcome
from storesync.core.runner import redact
from storesync.git import status as status_engine
from storesync.git.repository import Repository
from storesync.merge.detector import detect_session
from storesync.merge.strategies import apply_resolution
from storesync.sync import undo
from storesync.sync.retry import with_retry
from storesync.workflow import publish, pull
from storesync.workflow.graph import (
    create_publish_workflow,
    create_pull_workflow,
    run_workflow,
)
from storesync.workflow.state import (
    PUBLISH_STASH_MESSAGE,
    PULL_STASH_MESSAGE,
    PublishState,
    PullState,
    PullStrategy,
    SyncDeps,
)


class CatalogSync:
    """Sync engine bound to one repository."""

    def __init__(
        self,
        repo: Repository,
        registry: CatalogRegistry | None = None,
        sync: SyncConfig | None = None,
    ):
        self.repo = repo
        self.registry = registry or CatalogRegistry()
        self.sync = sync or SyncConfig()
        self._publish = create_publish_workflow()
        self._pull = create_pull_workflow()

    @classmethod
    def from_config(cls, config: Config) -> CatalogSync:
        return cls(
            Repository.from_config(config),
            CatalogRegistry(config.catalog.files),
            config.sync,
        )

    @property
    def deps(self) -> SyncDeps:
        return SyncDeps(repo=self.repo, registry=self.registry, sync=self.sync)

    async def _read(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    async def _retrying(self, fn, what: str):
        return await with_retry(
            fn,
            what,
            attempts=self.sync.read_retries,
            base=self.sync.backoff_base,
            cap=self.sync.backoff_cap,
        )

    def _ensure_no_conflict(self, operation: str) -> None:
        kind = self.repo.conflict_kind()
        if kind is not None:
            raise BusyError(
                f"Cannot {operation}: a {kind} conflict is waiting to be "
                f"resolved or aborted"
            )

    # ------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------

    async def get_status(self) -> RepoStatus:
        await self._read(self.repo.verify)
        return await self._read(
            status_engine.compute_status, self.repo, self.registry
        )

    async def check_remote_changes(self) -> RemoteChanges:
        """Fetch, then compare HEAD with the remote-tracking branch."""
        await self._read(self.repo.verify)
        await self._retrying(
            lambda: self._read(self.repo.fetch), "Remote check"
        )
        return await self._read(
            status_engine.remote_changes, self.repo, self.registry
        )

    async def check_potential_conflicts(self) -> ConflictPreview:
        """Records that would conflict if published now."""
        await self._read(self.repo.verify)
        await self._retrying(
            lambda: self._read(self.repo.fetch), "Conflict preview"
        )
        return await self._read(
            status_engine.potential_conflicts, self.repo, self.registry
        )

    async def get_conflict_details(self) -> ConflictSession | None:
        """The open conflict, or None when there is nothing to resolve."""
        return await self._read(detect_session, self.repo, self.registry)

    async def validate_remote_matches(self, expected_url: str) -> RemoteCheck:
        current = await self._read(self.repo.get_remote_url)
        return RemoteCheck(
            matches=current is not None
            and _normalize_url(current) == _normalize_url(expected_url),
            current_url=redact(current) if current else None,
        )

    # ------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------

    async def publish(
        self,
        message: str | None = None,
        paths: list[str] | None = None,
    ) -> SyncOutcome:
        """Commit local catalog edits and push them.

        Returns:
            Done, or ConflictHandle when the remote changed the same
            files; resolve and call continue_publish() to finish
        """
        with self.repo.lock.hold("publish"):
            await self._read(self.repo.verify)
            await self._read(self._ensure_no_conflict, "publish")
            state = PublishState(message=message, paths=paths)
            return await self._run_publish(publish.Stage(), state)

    async def continue_publish(
        self,
        message: str | None = None,
        paths: list[str] | None = None,
        resolution: Resolution | None = None,
    ) -> SyncOutcome:
        """Resume a publish after its conflict was resolved.

        With a resolution, an open conflict is resolved first. Local
        edits made since (or left over) are staged and committed
        before integrating again.
        Edits a selective publish set aside come back once pushed.
        """
        with self.repo.lock.hold("publish"):
            state = PublishState(message=message, paths=paths)
            conflict = await self._read(self.repo.conflict_kind)
            if conflict is not None:
                if resolution is None:
                    raise BusyError(
                        "Resolve the open conflict before continuing"
                    )
                start = publish.Resolve(resolution)
            else:
                git_status = await self._read(self.repo.status)
                start = (
                    publish.Integrate() if git_status.is_clean
                    else publish.Stage()
                )
            return await self._run_publish(start, state)

    async def _run_publish(self, start, state: PublishState) -> SyncOutcome:
        try:
            return await run_workflow(self._publish, start, state, self.deps)
        except SyncError:
            # A publish that failed outright gives back the edits it set aside
            await self._read(self._restore_stash, PUBLISH_STASH_MESSAGE)
            raise

    # ------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------

    async def pull_with_strategy(
        self, strategy: PullStrategy | str = PullStrategy.AUTO
    ) -> SyncOutcome:
        """Bring in remote changes, handling local edits per strategy.

        Returns:
            Done, NeedsDecision (strategy auto with local edits), or
            ConflictHandle
        """
        strategy = PullStrategy(strategy)
        with self.repo.lock.hold("pull"):
            await self._read(self.repo.verify)
            await self._read(self._ensure_no_conflict, "pull")
            state = PullState(strategy=strategy)
            return await run_workflow(
                self._pull, pull.FetchRemote(), state, self.deps
            )

    async def pull_with_retry(self) -> SyncOutcome:
        """Plain pull, retried on network failures."""
        return await self._retrying(
            lambda: self.pull_with_strategy(PullStrategy.AUTO), "Pull"
        )

    async def reset_to_remote(self) -> Done:
        """Discard every local commit and edit; match the remote tip."""
        with self.repo.lock.hold("reset"):
            await self._read(self.repo.verify)
            if await self._read(self.repo.is_merging):
                await self._read(self.repo.merge_abort)
            state = PullState(strategy=PullStrategy.FORCE)
            return await run_workflow(
                self._pull, pull.FetchRemote(), state, self.deps
            )

    # ------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------

    async def resolve_conflict(
        self, method: ResolutionMethod | str
    ) -> ConflictSession | None:
        """Resolve the open conflict wholesale (local, remote or smart merge).

        Returns:
            None once resolved, or the next session when popping the
            pull's stash conflicted in turn
        """
        return await self._resolve(Resolution(method=ResolutionMethod(method)))

    async def resolve_conflict_with_field_selections(
        self, selections: list[FieldSelection]
    ) -> ConflictSession | None:
        """Resolve with explicit per-field choices; the rest stays local."""
        return await self._resolve(Resolution(
            method=ResolutionMethod.CUSTOM,
            field_selections=selections,
        ))

    async def _resolve(self, resolution: Resolution) -> ConflictSession | None:
        with self.repo.lock.hold("resolve"):
            session = await self._read(detect_session, self.repo, self.registry)
            if session is None:
                raise SyncError("There is no conflict to resolve")
            await self._read(
                apply_resolution, self.repo, self.registry, session, resolution
            )
            await self._read(self._restore_stash, PULL_STASH_MESSAGE)
            return await self._read(detect_session, self.repo, self.registry)

    def _restore_stash(self, *recognised: str) -> None:
        """Pop the newest stash if a workflow made it and git is idle."""
        if self.repo.is_merging() or self.repo.unmerged_paths():
            return
        messages = self.repo.stash_messages()
        if messages and any(m in messages[0] for m in recognised):
            logger.info("Restoring stashed local edits", stash=messages[0])
            self.repo.stash_pop()

    async def abort_conflict(self) -> None:
        """Abandon the open conflict.

        A merge is aborted and any edits the workflow stashed before it
        are popped back. A conflicted stash pop is rolled back to the
        new tip; the stash entry is kept, so the local edits can still
        be recovered with ``git stash pop``.
        """
        with self.repo.lock.hold("abort"):
            session = await self._read(detect_session, self.repo, self.registry)
            if session is None:
                return
            if await self._read(self.repo.is_merging):
                await self._read(self.repo.merge_abort)
                await self._read(
                    self._restore_stash,
                    PULL_STASH_MESSAGE, PUBLISH_STASH_MESSAGE,
                )
            else:
                await self._read(self.repo.reset, "hard", "HEAD")
                logger.warn("Local edits remain in the stash")
            logger.info("Conflict aborted", kind=str(session.kind))

    # ------------------------------------------------------------
    # Restore and undo
    # ------------------------------------------------------------

    async def restore_file(self, path: str) -> None:
        with self.repo.lock.hold("restore"):
            await self._read(undo.restore_file, self.repo, path)

    async def undo_change(self, change: RecordChange) -> None:
        with self.repo.lock.hold("undo"):
            await self._read(undo.undo_change, self.repo, self.registry, change)


def _normalize_url(url: str) -> str:
    url = redact(url).replace("***@", "").strip().rstrip("/")
    return url[:-4] if url.endswith(".git") else url
