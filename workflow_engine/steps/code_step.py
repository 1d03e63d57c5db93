"""
Code Step

Run a registered Python handler.
"""

import inspect
from typing import Any, Dict, Optional

from ..context import ExecutionContext
from ..definition import CodeStep
from ..errors import StepExecutionError, WorkflowEngineError
from ..handlers import handler_args
from .base import BaseStep


class CodeStepExecutor(BaseStep):
    """
    Executor for code steps.

    Example YAML:
        - name: create-issues
          type: code
          handler: create-issues
          input: analysis
    """

    async def execute(self, step: CodeStep, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        registry = self.engine.handler_registry
        if not registry.has(step.handler):
            raise StepExecutionError(step.name, f"No handler registered with name: {step.handler}")
        handler = registry.get(step.handler)

        input_value = self.resolve_input(step, context)
        self.logger.debug(f"Running handler '{step.handler}' for step '{step.name}'")

        args = handler_args(handler, context, input_value, self.engine.handler_deps())

        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await self.engine.with_step_timeout(step.name, result)
        except WorkflowEngineError:
            raise
        except Exception as e:
            raise StepExecutionError(step.name, f'Handler "{step.handler}" failed: {e}') from e

        await self.store_output(step, context, result)
        return None
