"""Pull and reset-remote commands."""

from pydantic import Field

from storesync.command.base import SyncCommand
from storesync.command.report import (
    EXIT_FAILURE,
    emit,
    exit_code,
    format_outcome,
)
from storesync.sync.service import CatalogSync
from storesync.workflow.state import PullStrategy


class PullCommand(SyncCommand):
    """Bring in remote catalog changes.

    With local edits, 'auto' stops and asks (exit code 3); 'stash'
    sets them aside and re-applies them, 'commit' commits them first,
    'force' throws them away.
    """

    strategy: PullStrategy = Field(
        default=PullStrategy.AUTO,
        description="auto, stash, commit or force",
    )
    retry: bool = Field(
        default=False,
        description="Retry on network errors (strategy auto only)",
    )

    async def execute(self, sync: CatalogSync) -> int:
        if self.retry and self.strategy is PullStrategy.AUTO:
            outcome = await sync.pull_with_retry()
        else:
            outcome = await sync.pull_with_strategy(self.strategy)
        emit(format_outcome(outcome))
        return exit_code(outcome)


class ResetRemoteCommand(SyncCommand):
    """Discard all local commits and edits and match the remote."""

    yes: bool = Field(
        default=False,
        description="Confirm that local work may be thrown away",
    )

    async def execute(self, sync: CatalogSync) -> int:
        if not self.yes:
            emit(["This discards every local change; rerun with --yes"])
            return EXIT_FAILURE
        outcome = await sync.reset_to_remote()
        emit(format_outcome(outcome))
        return exit_code(outcome)
