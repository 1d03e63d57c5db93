"""
Handler: save-checkpoint

Marks the current task as done in the task tracking lists and persists a
checkpoint when the engine was given a saver.
"""

import logging
from typing import Any, Optional

from ..context import ExecutionContext
from ..types import utc_timestamp
from .registry import HandlerDeps

logger = logging.getLogger(__name__)


def mark_task_completed(context: ExecutionContext, task_id: str):
    """
    Move a task id from tasksPending to tasksCompleted.

    The lists are updated in place: a per-task child context shares them with
    its parent, so the progress is visible after the task finishes.
    """
    pending = context.get("tasksPending")
    if not isinstance(pending, list):
        pending = []
        context.set("tasksPending", pending)
    completed = context.get("tasksCompleted")
    if not isinstance(completed, list):
        completed = []
        context.set("tasksCompleted", completed)

    while task_id in pending:
        pending.remove(task_id)
    if task_id not in completed:
        completed.append(task_id)


async def save_checkpoint_handler(
    context: ExecutionContext,
    input: Any = None,
    deps: Optional[HandlerDeps] = None,
) -> None:
    task_id = context.current_task_id
    if not task_id:
        logger.debug("save-checkpoint called outside a task, nothing to record")
        return

    mark_task_completed(context, task_id)
    context.set(
        "lastCheckpoint",
        {"phase": context.current_phase, "taskId": task_id, "timestamp": utc_timestamp()},
    )
    logger.info(f"Task {task_id} completed ({len(context.get('tasksPending'))} pending)")

    if deps is not None and deps.checkpoint_saver is not None:
        await deps.checkpoint_saver(context)
