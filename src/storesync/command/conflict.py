"""Conflict commands: conflicts, resolve, abort."""

from pydantic import Field

from storesync.catalog.model import FieldSelection, ResolutionMethod
from storesync.command.base import SyncCommand
from storesync.command.report import (
    EXIT_CONFLICT,
    EXIT_FAILURE,
    EXIT_OK,
    emit,
    exit_code,
    format_outcome,
    format_session,
)
from storesync.sync.service import CatalogSync


def parse_selection(text: str) -> FieldSelection:
    """Parse ``[path:]ID.FIELD=local|remote``.

    Examples:
        "7.price=remote"
        "coupons.json:2.amount=local"
    """
    target, _, side = text.rpartition("=")
    if side not in ("local", "remote") or "." not in target:
        raise ValueError(
            f"Bad selection {text!r}; expected [path:]ID.FIELD=local|remote"
        )
    path = None
    if ":" in target:
        path, target = target.split(":", 1)
    record_id, field = target.split(".", 1)
    return FieldSelection(
        record_id=int(record_id),
        field=field,
        use_local=side == "local",
        path=path,
    )


class ConflictsCommand(SyncCommand):
    """Show the open conflict, record by record and field by field."""

    async def execute(self, sync: CatalogSync) -> int:
        session = await sync.get_conflict_details()
        emit(format_session(session))
        return EXIT_OK if session is None else EXIT_CONFLICT


class ResolveCommand(SyncCommand):
    """Resolve the open conflict.

    Pass --pick for per-field choices (method custom); unpicked fields
    keep the local value.
    """

    method: ResolutionMethod = Field(
        default=ResolutionMethod.SMART_MERGE,
        description="local, remote, smart_merge or custom",
    )
    pick: list[str] = Field(
        default_factory=list,
        description="Field choices, e.g. 7.price=remote (implies custom)",
    )
    publish: bool = Field(
        default=False,
        description="Continue publishing once resolved",
    )

    async def execute(self, sync: CatalogSync) -> int:
        if self.pick or self.method is ResolutionMethod.CUSTOM:
            try:
                selections = [parse_selection(p) for p in self.pick]
            except ValueError as e:
                emit([str(e)])
                return EXIT_FAILURE
            remaining = await sync.resolve_conflict_with_field_selections(
                selections
            )
        else:
            remaining = await sync.resolve_conflict(self.method)

        if remaining is not None:
            emit(format_session(remaining))
            return EXIT_CONFLICT
        emit(["Conflict resolved"])

        if self.publish:
            outcome = await sync.continue_publish()
            emit(format_outcome(outcome))
            return exit_code(outcome)
        return EXIT_OK


class AbortCommand(SyncCommand):
    """Abandon the open conflict and go back to a clean state."""

    async def execute(self, sync: CatalogSync) -> int:
        await sync.abort_conflict()
        emit(["Conflict aborted"])
        return EXIT_OK
