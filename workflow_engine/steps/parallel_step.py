"""
Parallel Step

Run child steps concurrently and wait for all of them to settle.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ..context import ExecutionContext
from ..definition import ParallelStep
from .base import BaseStep


class ParallelStepExecutor(BaseStep):
    """
    Executor for parallel steps.

    Every child runs to completion even when a sibling fails; the group then
    fails with the first child error in completion order. Children write to
    the shared context through ExecutionContext.commit.

    Example YAML:
        - name: review
          type: parallel
          output: reviews
          steps:
            - name: code-review
              agent: code-reviewer
              output: codeReview
            - name: security-review
              agent: security-reviewer
              output: securityReview
    """

    async def execute(self, step: ParallelStep, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        failures: List[Exception] = []

        async def run_child(child):
            try:
                await self.engine.execute_step(child, context)
            except Exception as e:
                failures.append(e)

        self.logger.debug(f"Parallel step '{step.name}' starting {len(step.steps)} children")
        await asyncio.gather(*(run_child(child) for child in step.steps))

        if failures:
            if len(failures) > 1:
                self.logger.warning(
                    f"Parallel step '{step.name}' had {len(failures)} failed children, "
                    f"raising the first: {failures[0]}"
                )
            raise failures[0]

        if step.output:
            outputs = {
                child.name: context.get(child.output)
                for child in step.steps
                if getattr(child, "output", None) and context.get(child.output) is not None
            }
            await self.store_output(step, context, outputs)
        return None
