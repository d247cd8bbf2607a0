"""CLI subcommands of storesync."""

from storesync.command.conflict import (
    AbortCommand,
    ConflictsCommand,
    ResolveCommand,
)
from storesync.command.publish import PublishCommand
from storesync.command.pull import PullCommand, ResetRemoteCommand
from storesync.command.restore import RestoreCommand, UndoCommand
from storesync.command.status import RemoteCommand, StatusCommand

__all__ = [
    "AbortCommand",
    "ConflictsCommand",
    "PublishCommand",
    "PullCommand",
    "RemoteCommand",
    "ResetRemoteCommand",
    "ResolveCommand",
    "RestoreCommand",
    "StatusCommand",
    "UndoCommand",
]
