"""Read-only commands: status, remote."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field

from storesync.command.base import SyncCommand
from storesync.command.report import (
    EXIT_FAILURE,
    EXIT_OK,
    emit,
    format_preview,
    format_remote,
    format_status,
)
from storesync.sync.service import CatalogSync

if TYPE_CHECKING:
    from storesync.core.config import State


class StatusCommand(SyncCommand):
    """Show local catalog changes, record by record."""

    async def execute(self, sync: CatalogSync) -> int:
        emit(format_status(await sync.get_status()))
        return EXIT_OK


class RemoteCommand(SyncCommand):
    """Fetch and show what the remote has that the local copy lacks."""

    preview: bool = Field(
        default=False,
        description="Also list records that would conflict on publish",
    )
    expect_url: str | None = Field(
        default=None,
        alias="expect-url",
        description=(
            "Fail unless the remote points at this URL; git.repo_url "
            "when not given"
        ),
    )

    async def run_workflow(self, state: State) -> int:
        if self.expect_url is None:
            self.expect_url = state.config.git.repo_url
        return await super().run_workflow(state)

    async def execute(self, sync: CatalogSync) -> int:
        if self.expect_url:
            check = await sync.validate_remote_matches(self.expect_url)
            if not check.matches:
                emit([f"Remote is {check.current_url}, expected "
                      f"{self.expect_url}"])
                return EXIT_FAILURE

        emit(format_remote(await sync.check_remote_changes()))
        if self.preview:
            emit(format_preview(await sync.check_potential_conflicts()))
        return EXIT_OK
