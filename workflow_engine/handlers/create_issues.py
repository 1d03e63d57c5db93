"""
Handler: create-issues

Prepares the analysis tasks for per-task execution: assigns missing task
ids and initializes the task tracking lists. When MCP servers are
configured, it also dispatches an agent to create one tracker issue per
task and records the returned issue ids.
"""

import logging
from typing import Any, Dict, List, Optional

from ..context import ExecutionContext
from ..errors import StepExecutionError
from ..types import QueryOptions, QueryRequest, RESULT_SUCCESS, is_result_message
from .registry import HandlerDeps

logger = logging.getLogger(__name__)

ISSUE_MAPPING_SCHEMA = {
    "type": "object",
    "properties": {
        "createdIssues": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "taskId": {"type": "string"},
                    "issueId": {"type": "string"},
                },
                "required": ["taskId", "issueId"],
            },
        },
    },
    "required": ["createdIssues"],
}

COMPLEXITY_PRIORITY = {"low": "low", "medium": "medium", "high": "high"}


def build_issue_creation_prompt(tasks: List[Dict[str, Any]], spec_path: Optional[str] = None) -> str:
    """Build the prompt asking an agent to create one issue per task."""
    task_lines = "\n".join(
        f'- Task ID: "{t.get("id")}", Title: "{t.get("title", "")}", '
        f'Description: "{t.get("description", "")}", '
        f'Priority: {COMPLEXITY_PRIORITY.get(t.get("estimatedComplexity"), "medium")}, '
        f'Requirements: [{", ".join(str(r) for r in t.get("requirements") or [])}]'
        for t in tasks
    )
    spec_ref = f"\nSpec path: {spec_path}\n" if spec_path else ""

    return (
        "Create tracker issues for the following workflow tasks using the issues_create tool.\n"
        f"{spec_ref}\n"
        "For each task below, create one issue with the task title, description and priority, "
        'type "issue", status "open", and labels ["workflow-engine", "auto-created"].\n\n'
        f"Tasks:\n{task_lines}\n\n"
        "After creating all issues, return a JSON object of the form:\n"
        '{"createdIssues": [{"taskId": "<original task id>", "issueId": "<issue ID returned>"}]}'
    )


async def create_tracker_issues(
    tasks: List[Dict[str, Any]],
    spec_path: Optional[str],
    deps: HandlerDeps,
) -> Optional[Dict[str, str]]:
    """
    Ask an agent to create tracker issues.

    Returns:
        Mapping of task id to issue id, or None when nothing was created
    """
    config = deps.config
    request = QueryRequest(
        prompt=build_issue_creation_prompt(tasks, spec_path),
        options=QueryOptions(
            output_format={"type": "json_schema", "schema": ISSUE_MAPPING_SCHEMA},
            model=config.defaults.model,
            cwd=str(config.working_directory),
            permission_mode=config.defaults.permission_mode,
            allow_dangerously_skip_permissions=config.defaults.permission_mode == "bypassPermissions",
            mcp_servers=config.mcp_servers,
            setting_sources=list(config.defaults.setting_sources),
        ),
    )

    created = None
    async for message in deps.query_fn(request):
        if not is_result_message(message) or message.get("subtype") != RESULT_SUCCESS:
            continue
        output = message.get("structured_output")
        if isinstance(output, dict) and isinstance(output.get("createdIssues"), list):
            created = output["createdIssues"]

    id_map = {
        m["taskId"]: m["issueId"]
        for m in created or []
        if isinstance(m, dict) and m.get("taskId") and m.get("issueId")
    }
    return id_map or None


async def create_issues_handler(
    context: ExecutionContext,
    input: Any = None,
    deps: Optional[HandlerDeps] = None,
) -> None:
    """
    Prepare tasks from the analysis result.

    Raises:
        StepExecutionError: If there is no analysis in the context
    """
    analysis = context.get("analysis")
    if not isinstance(analysis, dict):
        raise StepExecutionError("create-issues", 'create-issues handler requires "analysis" in context')

    tasks = [
        {**task, "id": task.get("id") or f"task-{index + 1:03d}"}
        for index, task in enumerate(analysis.get("tasks") or [])
    ]
    task_ids = [task["id"] for task in tasks]

    context.set("analysis", {**analysis, "tasks": tasks})
    context.set("taskIds", task_ids)
    context.set("tasksCompleted", [])
    context.set("tasksPending", list(task_ids))
    logger.info(f"Prepared {len(tasks)} tasks: {', '.join(task_ids)}")

    if deps is None or not deps.config.mcp_servers or not tasks:
        return

    try:
        issue_ids = await create_tracker_issues(tasks, context.get("specPath"), deps)
    except Exception as e:
        # Tracker issues are optional; the tasks are already stored.
        logger.warning(f"Tracker issue creation failed, continuing without issue ids: {e}")
        return

    if issue_ids:
        context.set("mcpIssueIds", issue_ids)
