"""Shared plumbing of the CLI subcommands."""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING

from pydantic import BaseModel

from storesync.command.report import EXIT_FAILURE, format_error
from storesync.core.errors import SyncError
from storesync.core.log import logger
from storesync.sync.service import CatalogSync

if TYPE_CHECKING:
    from storesync.core.config import State


class SyncCommand(BaseModel):
    """Base for subcommands that drive a CatalogSync."""

    async def run_workflow(self, state: State) -> int:
        """Run the command against the configured repository.

        Returns:
            Exit code: 0 done, 1 failure, 2 conflict pending,
            3 decision needed
        """
        sync = CatalogSync.from_config(state.config)
        try:
            return await self.execute(sync)
        except SyncError as e:
            logger.error("Command failed", error=str(e.error_class))
            print(format_error(e))
            return EXIT_FAILURE

    @abstractmethod
    async def execute(self, sync: CatalogSync) -> int:
        """Do the work of the subcommand and return its exit code."""
        raise NotImplementedError
