"""
Workflow Engine

Deterministic execution of YAML workflow definitions: agent dispatch, code
handlers, parallel groups, retry loops and per-task iteration, with pause,
checkpoint and resume.
"""

from pathlib import Path

from .context import Checkpoint, ExecutionContext
from .definition import (
    AgentStep,
    CodeStep,
    ExhaustedPolicy,
    LoopStep,
    ParallelStep,
    PerTaskStep,
    SafetyConfig,
    Step,
    StepKind,
    WorkflowDefaults,
    WorkflowDefinition,
    load_workflow_file,
    load_workflow_yaml,
    validate_step,
    validate_workflow_definition,
)
from .engine import WorkflowEngine
from .errors import (
    ConditionSyntaxError,
    ResolutionError,
    SafetyLimitExceeded,
    StepExecutionError,
    StepTimeoutError,
    ValidationError,
    WorkflowEngineError,
    WorkflowFailure,
    WorkflowPaused,
    WorkflowTimeoutError,
)
from .handlers import HandlerDeps, HandlerRegistry, create_default_registry
from .resolver import ArtifactKind, ResolutionSource, ResolvedFile, WorkflowResolver
from .types import (
    AuditEntry,
    AuditStatus,
    EngineConfig,
    EngineDefaults,
    QueryOptions,
    QueryRequest,
    RunResult,
    RunStatus,
)

# Workflows, agents and prompts shipped with the package.
BUILTIN_ROOT = Path(__file__).parent / "builtin"

__all__ = [
    "BUILTIN_ROOT",
    "WorkflowEngine",
    "ExecutionContext",
    "Checkpoint",
    "WorkflowDefinition",
    "WorkflowDefaults",
    "SafetyConfig",
    "Step",
    "StepKind",
    "ExhaustedPolicy",
    "AgentStep",
    "CodeStep",
    "ParallelStep",
    "LoopStep",
    "PerTaskStep",
    "validate_step",
    "validate_workflow_definition",
    "load_workflow_yaml",
    "load_workflow_file",
    "WorkflowResolver",
    "ArtifactKind",
    "ResolutionSource",
    "ResolvedFile",
    "HandlerRegistry",
    "HandlerDeps",
    "create_default_registry",
    "EngineConfig",
    "EngineDefaults",
    "QueryOptions",
    "QueryRequest",
    "AuditEntry",
    "AuditStatus",
    "RunResult",
    "RunStatus",
    "WorkflowEngineError",
    "ValidationError",
    "ConditionSyntaxError",
    "ResolutionError",
    "StepExecutionError",
    "WorkflowFailure",
    "WorkflowPaused",
    "SafetyLimitExceeded",
    "StepTimeoutError",
    "WorkflowTimeoutError",
]
