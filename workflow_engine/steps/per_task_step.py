"""
Per-Task Step

Run child steps once per task, in dependency order, each task in its own
child context.
"""

from typing import Any, Dict, List, Optional

from ..context import ExecutionContext
from ..definition import PerTaskStep
from ..errors import StepExecutionError, WorkflowFailure, WorkflowPaused
from ..handlers.save_checkpoint import mark_task_completed
from .base import BaseStep

TOPOLOGICAL_SORT_STEP = "topological-sort"


def task_key(task: Any, position: int) -> str:
    """Identity of a task for ordering; tasks without an id use their position."""
    if isinstance(task, dict) and task.get("id") is not None:
        return str(task["id"])
    return f"#{position}"


def topological_sort(tasks: List[Any]) -> List[Any]:
    """
    Order tasks so that every task comes after its dependencies.

    Dependencies on unknown ids are ignored. Tasks without dependencies
    keep their original relative order.

    Raises:
        WorkflowFailure: If the dependencies form a cycle
    """
    by_key = {task_key(task, i): task for i, task in enumerate(tasks)}
    visited = set()
    in_progress = set()
    ordered: List[Any] = []

    def visit(key: str):
        if key in visited:
            return
        if key in in_progress:
            message = f'Circular dependency detected involving task "{key}"'
            raise WorkflowFailure(TOPOLOGICAL_SORT_STEP, message, message)
        in_progress.add(key)

        task = by_key[key]
        dependencies = task.get("dependencies") if isinstance(task, dict) else None
        for dep_id in dependencies or []:
            if str(dep_id) in by_key:
                visit(str(dep_id))

        in_progress.discard(key)
        visited.add(key)
        ordered.append(task)

    for key in by_key:
        visit(key)
    return ordered


class PerTaskStepExecutor(BaseStep):
    """
    Executor for per-task steps.

    Each task gets a child context (ExecutionContext.with_task) that is merged
    back after its steps succeed. A pause inside a task still merges the child
    and records the task as done before the pause propagates, so the
    checkpoint reflects the task's work.

    Example YAML:
        - name: execute
          type: per-task
          source: analysis.tasks
          steps:
            - name: implement
              agent: implementer
              output: implementation
            - name: checkpoint
              type: code
              handler: save-checkpoint
    """

    async def execute(self, step: PerTaskStep, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        tasks = context.resolve(step.source)
        if not isinstance(tasks, list):
            raise StepExecutionError(step.name, f'per-task source "{step.source}" did not resolve to a list')

        ordered = topological_sort(tasks)
        count = len(ordered)
        processed: List[str] = []
        self.logger.info(f"Per-task step '{step.name}' running {count} tasks")

        for index, task in enumerate(ordered):
            child = context.with_task(task, index, count)
            self.logger.info(f"Task {index + 1}/{count}: {child.current_task_id}")

            try:
                for child_step in step.steps:
                    await self.engine.execute_step(child_step, child)
            except WorkflowPaused:
                context.merge_task_results(child)
                self._record_paused_task(context, child.current_task_id)
                raise

            context.merge_task_results(child)
            processed.append(child.current_task_id or task_key(task, index))

        await self.store_output(step, context, processed)
        return None

    def _record_paused_task(self, context: ExecutionContext, task_id: Optional[str]):
        """Move a paused task out of tasksPending when tasks are being tracked."""
        if not task_id:
            return
        tracked = isinstance(context.get("tasksPending"), list) or isinstance(
            context.get("tasksCompleted"), list
        )
        if tracked:
            mark_task_completed(context, task_id)
