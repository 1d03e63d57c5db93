"""
Agent Step

Compose an agent/prompt request, dispatch it to the query function and
store the structured result.
"""

from typing import Any, Dict, Optional

from ..context import ExecutionContext
from ..definition import AgentStep
from ..errors import StepExecutionError, WorkflowEngineError, WorkflowFailure
from ..loaders import (
    AgentDefinition,
    PromptDefinition,
    RunCondition,
    compose_agent_request,
    load_agent_file,
    load_prompt_file,
)
from ..types import QueryOptions, QueryRequest, RESULT_SUCCESS, is_result_message
from .base import BaseStep

DISABLED_REASON = "disabled in workflow definition"
SKIP_CHECKS_REASON = "--skip-checks"
CHECK_MARKERS = ("review", "check")


def is_check_step(step: AgentStep) -> bool:
    """
    Check whether a step counts as a check for --skip-checks.

    A check step has "review" or "check" in its name, or "review" in its
    agent name.
    """
    name = step.name.lower()
    if any(marker in name for marker in CHECK_MARKERS):
        return True
    return bool(step.agent) and "review" in step.agent.lower()


class AgentStepExecutor(BaseStep):
    """
    Executor for agent steps.

    Example YAML:
        - name: analyze
          agent: spec-analyzer
          prompt: analyze-spec
          output: analysis
          failWhen: analysis.blocked == true
    """

    def skip_reason(self, step: AgentStep, context: ExecutionContext) -> Optional[str]:
        config = self.engine.config
        if not step.enabled:
            return DISABLED_REASON
        if step.name in config.skip_step_names:
            return f"--skip-step={step.name}"
        if config.skip_checks and is_check_step(step):
            return SKIP_CHECKS_REASON
        if step.condition and not context.evaluate(step.condition):
            return f"condition not met: {step.condition}"
        return self._run_condition_reason(step, context)

    def _run_condition_reason(self, step: AgentStep, context: ExecutionContext) -> Optional[str]:
        """Skip an agent declared with runCondition: changed-files-match when no changed file matches."""
        agent = self._load_agent(step.agent or self.engine.active_defaults.agent)
        if agent is None or agent.run_condition != RunCondition.CHANGED_FILES_MATCH:
            return None
        if agent.file_patterns and not context.changed_files_match(agent.file_patterns):
            return f"no changed files match: {', '.join(agent.file_patterns)}"
        return None

    async def execute(self, step: AgentStep, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        request = self.build_request(step, context)
        self.logger.debug(
            f"Dispatching agent step '{step.name}' (model={request.options.model}, "
            f"tools={request.options.allowed_tools})"
        )

        result = await self.engine.with_step_timeout(step.name, self._dispatch(step, request))

        if step.output and result is not None:
            await self.store_output(step, context, result)
            context.add_changed_files_from_result(result)
        elif result is None:
            self.logger.info(f"Agent step '{step.name}' produced no structured result")

        if step.fail_when and context.evaluate(step.fail_when):
            raise WorkflowFailure(step.name, step.fail_when)
        return None

    def build_request(self, step: AgentStep, context: ExecutionContext) -> QueryRequest:
        """
        Load the step's agent and prompt and compose the query request.

        Raises:
            ResolutionError: If the agent or prompt cannot be found
            ValidationError: If the agent or prompt file is malformed
        """
        defaults = self.engine.active_defaults
        agent = self._load_agent(step.agent or defaults.agent)
        prompt = self._load_prompt(step.prompt)

        variables = context.template_vars()
        variables.update(self._input_vars(step, context))

        composed = compose_agent_request(
            agent=agent,
            prompt=prompt,
            variables=variables,
            builtins=self.engine.builtin_vars(context),
            default_model=defaults.model,
            cwd=str(self.engine.config.working_directory),
            model_override=step.model,
        )

        output_format = None
        if composed.output_schema is not None:
            output_format = {"type": "json_schema", "schema": composed.output_schema}

        return QueryRequest(
            prompt=composed.prompt,
            options=QueryOptions(
                system_prompt=composed.system_prompt,
                allowed_tools=composed.tools,
                output_format=output_format,
                model=composed.model,
                cwd=composed.cwd,
                permission_mode=defaults.permission_mode,
                allow_dangerously_skip_permissions=defaults.permission_mode == "bypassPermissions",
                mcp_servers=self.engine.config.mcp_servers,
                setting_sources=list(defaults.setting_sources),
            ),
        )

    def _load_agent(self, name: Optional[str]) -> Optional[AgentDefinition]:
        if not name:
            return None
        return load_agent_file(self.engine.resolver.resolve_agent(name).path)

    def _load_prompt(self, name: Optional[str]) -> Optional[PromptDefinition]:
        if not name:
            return None
        return load_prompt_file(self.engine.resolver.resolve_prompt(name).path)

    def _input_vars(self, step: AgentStep, context: ExecutionContext) -> Dict[str, Any]:
        """Expose the resolved input under its leaf key (or each map key)."""
        resolved = self.resolve_input(step, context)
        if resolved is None:
            return {}
        if isinstance(step.input, str):
            return {step.input.split(".")[-1]: resolved}
        return {key: value for key, value in resolved.items() if value is not None}

    async def _dispatch(self, step: AgentStep, request: QueryRequest) -> Any:
        """
        Consume the query function's messages.

        Returns:
            The last successful structured output, or None

        Raises:
            StepExecutionError: On an error result or if the query function raises
        """
        result = None
        try:
            async for message in self.engine.query_fn(request):
                if not is_result_message(message):
                    continue
                subtype = message.get("subtype")
                if subtype != RESULT_SUCCESS:
                    errors = message.get("errors")
                    details = ", ".join(str(e) for e in errors) if errors is not None else "unknown error"
                    raise StepExecutionError(step.name, f'Agent "{step.name}" failed: {subtype} - {details}')
                if message.get("structured_output") is not None:
                    result = message["structured_output"]
        except WorkflowEngineError:
            raise
        except Exception as e:
            raise StepExecutionError(step.name, f'Agent "{step.name}" dispatch failed: {e}') from e
        return result
