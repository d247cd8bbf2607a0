"""Restore and undo commands."""

from pydantic import Field

from storesync.command.base import SyncCommand
from storesync.command.report import EXIT_FAILURE, EXIT_OK, emit
from storesync.sync.service import CatalogSync


class RestoreCommand(SyncCommand):
    """Throw away the local edits of one file."""

    path: str = Field(description="Repository-relative file path")

    async def execute(self, sync: CatalogSync) -> int:
        await sync.restore_file(self.path)
        emit([f"Restored {self.path}"])
        return EXIT_OK


class UndoCommand(SyncCommand):
    """Undo one pending record change, keeping every other edit."""

    path: str = Field(description="Catalog file, e.g. products.json")
    id: int = Field(description="Record id")

    async def execute(self, sync: CatalogSync) -> int:
        status = await sync.get_status()
        changeset = status.changesets.get(self.path)
        change = changeset.find(self.id) if changeset else None
        if change is None:
            emit([f"No pending change to record {self.id} in {self.path}"])
            return EXIT_FAILURE
        await sync.undo_change(change)
        emit([f"Undid: {change.description}"])
        return EXIT_OK
