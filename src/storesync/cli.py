#!/usr/bin/env python3
"""storesync CLI - keep a JSON product catalog in sync through git."""

import asyncio
import sys

from pydantic import Field
from pydantic_settings import CliApp, CliSubCommand, get_subcommand

from storesync.command import (
    AbortCommand,
    ConflictsCommand,
    PublishCommand,
    PullCommand,
    RemoteCommand,
    ResetRemoteCommand,
    ResolveCommand,
    RestoreCommand,
    StatusCommand,
    UndoCommand,
)
from storesync.core.config import State


class CliState(State):
    """Sync a product and coupon catalog with a shared git remote.

    Edits are compared record by record; when the remote changed the
    same records, storesync shows the conflicting fields and lets you
    keep either side, merge non-overlapping edits automatically, or
    pick field by field.

    Configuration sources (in priority order):
    1. Command-line arguments (--config.git.branch main)
    2. storesync.yaml in the current directory, the user config
       directory, and any --include files
    3. .env file for secrets
    4. Environment variables
       (STORESYNC_CONFIG__GIT__TOKEN=value)

    Exit codes: 0 done, 1 failure, 2 conflict pending, 3 decision
    needed.
    """

    status: CliSubCommand[StatusCommand]
    remote: CliSubCommand[RemoteCommand]
    publish: CliSubCommand[PublishCommand]
    pull: CliSubCommand[PullCommand]
    conflicts: CliSubCommand[ConflictsCommand]
    resolve: CliSubCommand[ResolveCommand]
    restore: CliSubCommand[RestoreCommand]
    undo: CliSubCommand[UndoCommand]
    abort: CliSubCommand[AbortCommand]
    reset_remote: CliSubCommand[ResetRemoteCommand] = Field(
        alias="reset-remote"
    )

    def cli_cmd(self):
        """Dispatch to the active subcommand, or show help."""
        subcommand = get_subcommand(self, is_required=False)

        if subcommand is None:
            CliApp.run(CliState, cli_args=['--help'])
            sys.exit(1)

        try:
            exit_code = asyncio.run(subcommand.run_workflow(self))
        finally:
            self.config.close()
        raise SystemExit(exit_code)


def main():
    """Main entry point for CLI."""
    CliApp.run(CliState)


if __name__ == "__main__":
    main()
