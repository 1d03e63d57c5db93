"""
Loop Step

Repeat child steps while a condition holds, up to a retry limit.
"""

from typing import Any, Dict, Optional

from ..context import ExecutionContext
from ..definition import ExhaustedPolicy, LoopStep
from ..errors import WorkflowFailure, WorkflowPaused
from .base import BaseStep


class LoopStepExecutor(BaseStep):
    """
    Executor for loop steps.

    The condition is checked after every attempt, and again before every
    attempt but the first, so a loop whose condition is already false after
    one pass stops there. When the retries run out with the condition still
    true, on_exhausted decides the outcome:

      escalate  pause the workflow (resumable)
      fail      fail the workflow
      warn      log a warning and continue

    Example YAML:
        - name: review-fix
          type: loop
          condition: review.hasActionableIssues
          maxRetries: 3
          onExhausted: escalate
          steps:
            - name: fix
              agent: fixer
            - name: review
              agent: reviewer
              output: review
    """

    def max_attempts(self, step: LoopStep) -> int:
        """Retry limit after applying the workflow's safety cap."""
        safety = self.engine.safety
        if safety is not None and safety.max_loop_retries:
            return min(step.max_retries, safety.max_loop_retries)
        return step.max_retries

    async def execute(self, step: LoopStep, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        limit = self.max_attempts(step)
        iterations = 0

        for attempt in range(limit):
            if attempt > 0 and not context.evaluate(step.condition):
                break

            self.logger.debug(f"Loop '{step.name}' attempt {attempt + 1}/{limit}")
            for child in step.steps:
                await self.engine.execute_step(child, context)
            iterations += 1

            if not context.evaluate(step.condition):
                break

        exhausted = context.evaluate(step.condition)
        if step.output:
            await self.store_output(step, context, {"iterations": iterations, "exhausted": exhausted})

        if not exhausted:
            return None

        if step.on_exhausted == ExhaustedPolicy.ESCALATE:
            raise WorkflowPaused(
                step.name,
                f'Loop exhausted {limit} retries. Condition "{step.condition}" still true.',
            )
        if step.on_exhausted == ExhaustedPolicy.FAIL:
            raise WorkflowFailure(step.name, step.condition, f"Loop exhausted {limit} retries")

        warning = f"Loop exhausted {limit} retries, continuing"
        self.logger.warning(f"Loop '{step.name}': {warning}")
        return {"warning": warning}
