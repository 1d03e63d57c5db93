"""
Workflow Engine

Runs a workflow definition phase by phase against an execution context,
dispatching each step to its executor and converting pause/failure signals
into run results.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .audit import AuditLog
from .context import Checkpoint, ExecutionContext
from .definition import SafetyConfig, Step, StepKind, WorkflowDefinition, load_workflow_file
from .errors import (
    ResolutionError,
    StepExecutionError,
    StepTimeoutError,
    WorkflowFailure,
    WorkflowPaused,
    WorkflowTimeoutError,
)
from .handlers import HandlerDeps, HandlerRegistry, create_default_registry
from .resolver import WorkflowResolver, is_within
from .steps import (
    AgentStepExecutor,
    BaseStep,
    CodeStepExecutor,
    LoopStepExecutor,
    ParallelStepExecutor,
    PerTaskStepExecutor,
)
from .types import (
    AuditEntry,
    AuditSink,
    EngineConfig,
    EngineDefaults,
    QueryFunction,
    RunResult,
    RunStatus,
)

# Dry runs stop before this phase.
DRY_RUN_STOP_PHASE = "execute"

WORKFLOW_EXTENSIONS = (".yaml", ".yml")

# Error text recorded for steps interrupted by cancellation.
CANCELLED_ERROR = "cancelled"


class WorkflowEngine:
    """
    Workflow execution engine.

    Executes the phases of a workflow definition in order. Every step, nested
    or not, goes through execute_step, which picks the executor for the step's
    kind and records started/completed/failed/skipped audit entries.
    """

    def __init__(
        self,
        config: EngineConfig,
        query_fn: QueryFunction,
        handler_registry: Optional[HandlerRegistry] = None,
        audit_sink: Optional[AuditSink] = None,
        resolver: Optional[WorkflowResolver] = None,
        checkpoint_saver: Optional[Callable[[ExecutionContext], Awaitable[None]]] = None,
    ):
        """
        Initialize workflow engine.

        Args:
            config: Engine configuration
            query_fn: Task-execution function agent steps dispatch to
            handler_registry: Handlers for code steps (defaults to the built-in set)
            audit_sink: Optional callback receiving every audit entry
            resolver: Name resolver for workflows, agents and prompts.
                      If not provided, one is built from the config.
            checkpoint_saver: Optional callback handlers use to persist checkpoints
        """
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.query_fn = query_fn
        self.handler_registry = handler_registry if handler_registry is not None else create_default_registry()
        self.resolver = resolver or WorkflowResolver(config.working_directory, config.builtin_root)
        self.checkpoint_saver = checkpoint_saver
        self.audit = AuditLog(audit_sink, config.audit_max_entries)

        self.definition: Optional[WorkflowDefinition] = None
        self.active_defaults: EngineDefaults = config.defaults
        self.safety: Optional[SafetyConfig] = None

        self._executors: Dict[StepKind, BaseStep] = {
            StepKind.AGENT: AgentStepExecutor(self),
            StepKind.CODE: CodeStepExecutor(self),
            StepKind.PARALLEL: ParallelStepExecutor(self),
            StepKind.LOOP: LoopStepExecutor(self),
            StepKind.PER_TASK: PerTaskStepExecutor(self),
        }
        missing = set(StepKind) - set(self._executors)
        if missing:
            raise RuntimeError(f"No executor for step kinds: {sorted(k.value for k in missing)}")

        if audit_sink is None:
            self.logger.warning("No audit sink configured; audit entries are kept in memory only")

    # --- Loading ---

    def load_definition(self, workflow_path: Union[str, Path]) -> WorkflowDefinition:
        """
        Load a workflow by name or by path.

        A bare name (no path separator, no YAML extension) goes through the
        resolver. Anything else is a path relative to workflow_base_dir and
        must stay inside it.

        Raises:
            ResolutionError: If the name is not found or the path escapes
            ValidationError: If the definition is malformed
        """
        text = str(workflow_path)
        is_name = "/" not in text and os.sep not in text and not text.endswith(WORKFLOW_EXTENSIONS)

        if is_name:
            path = self.resolver.resolve_workflow(text).path
        else:
            base = self.config.workflow_base_dir.resolve()
            path = (base / text).resolve()
            if not is_within(path, base):
                raise ResolutionError(f'Path "{path}" escapes workflow directory "{base}"')

        self.logger.info(f"Loading workflow from {path}")
        return load_workflow_file(path)

    def _activate(self, definition: WorkflowDefinition):
        """Apply a definition's defaults and safety limits for this run."""
        self.definition = definition
        self.safety = self._merge_safety(definition.safety)
        engine_defaults = self.config.defaults
        workflow_defaults = definition.defaults
        self.active_defaults = EngineDefaults(
            model=workflow_defaults.model or engine_defaults.model,
            permission_mode=workflow_defaults.permission_mode or engine_defaults.permission_mode,
            setting_sources=list(
                workflow_defaults.setting_sources
                if workflow_defaults.setting_sources is not None
                else engine_defaults.setting_sources
            ),
            agent=workflow_defaults.agent or engine_defaults.agent,
        )

    def _merge_safety(self, safety: Optional[SafetyConfig]) -> Optional[SafetyConfig]:
        step_ms = self.config.max_step_timeout_ms
        workflow_ms = self.config.max_workflow_duration_ms
        if safety is None:
            if step_ms is None and workflow_ms is None:
                return None
            safety = SafetyConfig()
        return SafetyConfig(
            max_loop_retries=safety.max_loop_retries,
            max_step_timeout_ms=safety.max_step_timeout_ms or step_ms,
            max_workflow_duration_ms=safety.max_workflow_duration_ms or workflow_ms,
            fail_on_step_error=safety.fail_on_step_error,
        )

    # --- Services for step executors ---

    def builtin_vars(self, context: ExecutionContext) -> Dict[str, Any]:
        """Template variables every agent step can use."""
        builtins: Dict[str, Any] = {
            "specPath": context.get("specPath"),
            "worktreePath": str(self.config.working_directory),
            "sessionId": self.config.session_id,
            "branchName": self.config.branch_name,
        }
        if context.current_task_index is not None:
            builtins["task"] = context.get("task")
            builtins["taskIndex"] = context.current_task_index
            builtins["taskCount"] = context.current_task_count
        return builtins

    def handler_deps(self) -> HandlerDeps:
        return HandlerDeps(
            query_fn=self.query_fn,
            config=self.config,
            checkpoint_saver=self.checkpoint_saver,
        )

    async def with_step_timeout(self, step_name: str, awaitable: Awaitable[Any]) -> Any:
        """
        Await a dispatch or handler call under max_step_timeout_ms.

        Raises:
            StepTimeoutError: If the limit is exceeded (the call is cancelled)
        """
        limit_ms = self.safety.max_step_timeout_ms if self.safety is not None else None
        if not limit_ms:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=limit_ms / 1000)
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(step_name, limit_ms) from e

    async def execute_step(self, step: Step, context: ExecutionContext):
        """
        Execute one step of any kind, with auditing.

        Skipped steps emit a single skipped entry. Otherwise a started entry is
        emitted before the executor runs and a completed or failed entry after.
        """
        executor = self._executors[step.kind]

        reason = executor.skip_reason(step, context)
        if reason is not None:
            self.logger.warning(f"Skipping step '{step.name}': {reason}")
            await self.audit.skipped(step.name, reason)
            return

        await self.audit.started(step.name)
        try:
            metadata = await executor.execute(step, context)
        except asyncio.CancelledError:
            # Cancelled by a timeout around an enclosing step or the whole run.
            await self.audit.failed(step.name, CANCELLED_ERROR)
            raise
        except Exception as e:
            await self.audit.failed(step.name, e)
            raise
        await self.audit.completed(step.name, metadata)

    # --- Running ---

    async def run(self, workflow_path: Union[str, Path], spec_path: str) -> RunResult:
        """
        Run a workflow from its first phase.

        Args:
            workflow_path: Workflow name or path to its YAML file
            spec_path: Spec file the workflow implements (stored as specPath)

        Returns:
            RunResult (completed, paused or failed)

        Raises:
            WorkflowEngineError: For errors other than pause and workflow failure
        """
        definition = self.load_definition(workflow_path)
        self._activate(definition)
        context = ExecutionContext({"specPath": spec_path})

        self.logger.info(f"Running workflow '{definition.name}' ({len(definition.phases)} phases)")
        return await self._execute(definition, context, definition.phases)

    async def resume(
        self,
        workflow_path: Union[str, Path],
        checkpoint: Union[Checkpoint, Dict[str, Any]],
        from_phase: str,
    ) -> RunResult:
        """
        Resume a workflow from a checkpoint.

        Phases already completed in the checkpoint are skipped.

        Args:
            workflow_path: Workflow name or path to its YAML file
            checkpoint: Checkpoint or its dictionary form
            from_phase: Phase to continue from

        Returns:
            RunResult (completed, paused or failed)

        Raises:
            ValueError: If from_phase is not a phase of the workflow
        """
        definition = self.load_definition(workflow_path)
        self._activate(definition)
        context = ExecutionContext.from_checkpoint(checkpoint)

        start = definition.phase_index(from_phase)
        if start < 0:
            raise ValueError(f'Phase "{from_phase}" not found in workflow definition')

        self.logger.info(
            f"Resuming workflow '{definition.name}' from phase '{from_phase}' "
            f"({len(context.completed_phases)} phases already completed)"
        )
        return await self._execute(definition, context, definition.phases[start:])

    async def _execute(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        phases: List[Step],
    ) -> RunResult:
        limit_ms = self.safety.max_workflow_duration_ms if self.safety is not None else None

        try:
            if limit_ms:
                try:
                    failed = await asyncio.wait_for(
                        self._run_phases(context, phases), timeout=limit_ms / 1000
                    )
                except asyncio.TimeoutError as e:
                    raise WorkflowTimeoutError(definition.name, limit_ms) from e
            else:
                failed = await self._run_phases(context, phases)
        except WorkflowPaused as e:
            self.logger.info(f"Workflow '{definition.name}' paused at phase '{context.current_phase}': {e.blocker_details}")
            return self._result(
                context,
                RunStatus.PAUSED,
                paused_at_phase=context.current_phase,
                blocker_details=e.blocker_details,
                checkpoint=context.to_checkpoint().to_dict(),
            )
        except WorkflowFailure as e:
            self.logger.error(f"Workflow '{definition.name}' failed: {e}")
            return self._result(context, RunStatus.FAILED, error=str(e))
        except Exception:
            self.logger.error(
                f"Workflow '{definition.name}' aborted in phase '{context.current_phase}'", exc_info=True
            )
            raise

        if failed:
            return self._result(context, RunStatus.FAILED, error=f"Phases failed: {', '.join(failed)}")

        self.logger.info(f"Workflow '{definition.name}' completed: {context.completed_phases}")
        return self._result(context, RunStatus.COMPLETED)

    async def _run_phases(self, context: ExecutionContext, phases: List[Step]) -> List[str]:
        """
        Walk phases in order.

        Returns:
            Names of phases that failed while fail_on_step_error is off
        """
        fail_on_step_error = self.safety.fail_on_step_error if self.safety is not None else True
        failed: List[str] = []

        for phase in phases:
            if self.config.dry_run and phase.name == DRY_RUN_STOP_PHASE:
                self.logger.info(f"Dry run: stopping before phase '{phase.name}'")
                break
            if context.is_phase_completed(phase.name):
                self.logger.info(f"Phase '{phase.name}' already completed, skipping")
                continue

            context.current_phase = phase.name
            self.logger.info(f"Phase '{phase.name}' started")
            try:
                await self.execute_step(phase, context)
            except StepExecutionError as e:
                if fail_on_step_error:
                    raise
                self.logger.error(f"Phase '{phase.name}' failed, continuing: {e}", exc_info=True)
                failed.append(phase.name)
                continue

            context.mark_phase_completed(phase.name)
            self.logger.info(f"Phase '{phase.name}' completed")
            if self.config.on_phase_complete is not None:
                await self.config.on_phase_complete(phase.name, context)

        return failed

    def _result(self, context: ExecutionContext, status: RunStatus, **kwargs) -> RunResult:
        return RunResult(
            status=status,
            completed_phases=list(context.completed_phases),
            outputs=context.template_vars(),
            changed_files=list(context.changed_files),
            **kwargs,
        )

    def get_audit_log(self) -> List[AuditEntry]:
        """Copy of the audit entries recorded so far."""
        return self.audit.entries()
