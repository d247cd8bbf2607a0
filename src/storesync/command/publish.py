"""Publish command."""

from pydantic import Field

from storesync.command.base import SyncCommand
from storesync.command.report import emit, exit_code, format_outcome
from storesync.sync.service import CatalogSync


class PublishCommand(SyncCommand):
    """Commit local catalog edits and push them to the remote.

    Stops with exit code 2 if the remote changed the same files; run
    'storesync conflicts', then 'storesync resolve' to finish.
    """

    message: str | None = Field(
        default=None,
        description="Commit message (generated from the changes if unset)",
    )
    files: list[str] | None = Field(
        default=None,
        description="Publish only these files",
    )
    resume: bool = Field(
        default=False,
        description="Continue a publish that stopped on a conflict",
    )

    async def execute(self, sync: CatalogSync) -> int:
        if self.resume:
            outcome = await sync.continue_publish(self.message, self.files)
        else:
            outcome = await sync.publish(self.message, self.files)
        emit(format_outcome(outcome))
        return exit_code(outcome)
