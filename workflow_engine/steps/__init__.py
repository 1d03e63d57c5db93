"""Step executors, one per step kind."""

from .agent_step import AgentStepExecutor, is_check_step
from .base import BaseStep
from .code_step import CodeStepExecutor
from .loop_step import LoopStepExecutor
from .parallel_step import ParallelStepExecutor
from .per_task_step import PerTaskStepExecutor, topological_sort

__all__ = [
    "BaseStep",
    "AgentStepExecutor",
    "CodeStepExecutor",
    "ParallelStepExecutor",
    "LoopStepExecutor",
    "PerTaskStepExecutor",
    "is_check_step",
    "topological_sort",
]
