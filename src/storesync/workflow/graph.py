"""Graph construction and execution for the sync workflows."""

from pydantic_graph import BaseNode, Graph

from storesync.core.errors import SyncError
from storesync.core.log import logger
from storesync.core.result import SyncOutcome
from storesync.workflow.state import (
    PublishPhase,
    PublishState,
    PullPhase,
    PullState,
    SyncDeps,
)


def create_publish_workflow() -> Graph:
    """Stage → Commit → Fetch → Integrate → Push → Finish, plus Resolve."""
    from storesync.workflow.publish import PUBLISH_NODES

    return Graph(nodes=PUBLISH_NODES, state_type=PublishState, name="publish")


def create_pull_workflow() -> Graph:
    """FetchRemote → CheckLocal → strategy → Integrate → Finish."""
    from storesync.workflow.pull import PULL_NODES

    return Graph(nodes=PULL_NODES, state_type=PullState, name="pull")


async def run_workflow(
    graph: Graph,
    start: BaseNode,
    state: PublishState | PullState,
    deps: SyncDeps,
) -> SyncOutcome:
    """Run graph from start until it ends.

    The state's phase is set to FAILED when a node raises; the error
    itself propagates to the caller.
    """
    failed = (
        PublishPhase.FAILED if isinstance(state, PublishState)
        else PullPhase.FAILED
    )

    with logger.span(f"{graph.name} workflow", start=type(start).__name__):
        try:
            async with graph.iter(start, state=state, deps=deps) as run:
                async for node in run:
                    logger.debug(
                        "Workflow step",
                        workflow=graph.name,
                        node=type(node).__name__,
                        phase=str(state.phase),
                    )
        except SyncError as e:
            # A refused resolution leaves the conflict open
            if state.phase != "conflicted":
                state.phase = failed
            logger.error(
                f"{graph.name} failed",
                error=str(e.error_class),
                message=e.message,
            )
            raise
    return run.result.output
