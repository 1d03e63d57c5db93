"""
Base Step

Abstract base class for all step executors.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..context import ExecutionContext
from ..definition import Step

if TYPE_CHECKING:
    from ..engine import WorkflowEngine


class BaseStep(ABC):
    """
    Abstract base class for step executors.

    One executor instance exists per step kind and is shared by every step of
    that kind in a run. Executors that contain nested steps hand them back to
    the engine's execute_step, which owns auditing.
    """

    def __init__(self, engine: "WorkflowEngine"):
        """
        Initialize step executor.

        Args:
            engine: Engine that owns the run (config, query function, registry)
        """
        self.engine = engine
        self.logger = logging.getLogger(self.__class__.__module__)

    def skip_reason(self, step: Step, context: ExecutionContext) -> Optional[str]:
        """
        Decide whether a step is skipped.

        Returns:
            The audit reason if the step should be skipped, otherwise None
        """
        return None

    @abstractmethod
    async def execute(self, step: Step, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        """
        Execute the step.

        Args:
            step: Step definition
            context: Execution context to read from and write to

        Returns:
            Optional metadata recorded on the step's completed audit entry

        Raises:
            WorkflowEngineError: If the step fails, pauses or fails the workflow
        """
        pass

    def resolve_input(self, step: Step, context: ExecutionContext) -> Any:
        """
        Resolve a step's input against the context.

        A string input is a context path; a map input resolves each string
        value as a path and keeps other values as given.
        """
        raw = getattr(step, "input", None)
        if raw is None:
            return None
        if isinstance(raw, str):
            return context.resolve(raw)
        return {
            key: context.resolve(value) if isinstance(value, str) else value
            for key, value in raw.items()
        }

    async def store_output(self, step: Step, context: ExecutionContext, value: Any) -> bool:
        """
        Store a value under the step's output variable.

        Returns:
            True if the value was stored
        """
        output = getattr(step, "output", None)
        if not output or value is None:
            return False
        await context.commit(output, value)
        return True
