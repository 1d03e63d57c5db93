"""
Workflow Engine Errors

Exception taxonomy shared by the loader, the step executors and the engine.
"""

from typing import Optional


class WorkflowEngineError(Exception):
    """Base class for all workflow engine errors."""


class ValidationError(WorkflowEngineError):
    """Malformed workflow definition, step, agent or prompt file.

    Raised at load time only, never while a run is in progress.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class ConditionSyntaxError(ValidationError):
    """A condition expression could not be parsed."""


class ResolutionError(WorkflowEngineError):
    """A named workflow, agent or prompt was not found in any search tier."""


class StepExecutionError(WorkflowEngineError):
    """A step failed while running (query function or handler raised)."""

    def __init__(self, step_name: str, message: str):
        self.step_name = step_name
        super().__init__(message)


class WorkflowFailure(WorkflowEngineError):
    """Terminal failure requested by the workflow itself (failWhen, loop fail)."""

    def __init__(self, step_name: str, condition: str, message: Optional[str] = None):
        self.step_name = step_name
        self.condition = condition
        super().__init__(
            message
            or f'Step "{step_name}" failed: condition "{condition}" evaluated to true'
        )


class WorkflowPaused(WorkflowEngineError):
    """
    Signal raised when a loop escalates.

    Not an error outcome: the engine converts it into a paused RunResult
    that can be resumed from its checkpoint.
    """

    def __init__(self, step_name: str, blocker_details: str):
        self.step_name = step_name
        self.blocker_details = blocker_details
        super().__init__(f'Workflow paused at step "{step_name}": {blocker_details}')


class SafetyLimitExceeded(WorkflowEngineError):
    """A configured safety limit was breached."""

    def __init__(self, message: str, limit_ms: int):
        self.limit_ms = limit_ms
        super().__init__(message)


class StepTimeoutError(SafetyLimitExceeded):
    """A single dispatch or handler call exceeded max_step_timeout_ms."""

    def __init__(self, step_name: str, limit_ms: int):
        self.step_name = step_name
        super().__init__(f'Step "{step_name}" exceeded timeout of {limit_ms}ms', limit_ms)


class WorkflowTimeoutError(SafetyLimitExceeded):
    """The whole run exceeded max_workflow_duration_ms."""

    def __init__(self, workflow_name: str, limit_ms: int):
        self.workflow_name = workflow_name
        super().__init__(
            f'Workflow "{workflow_name}" exceeded maximum duration of {limit_ms}ms',
            limit_ms,
        )
