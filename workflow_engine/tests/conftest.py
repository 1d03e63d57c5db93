"""
Shared fixtures for workflow engine tests.
"""

import asyncio
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

from workflow_engine import EngineConfig, WorkflowEngine
from workflow_engine.types import QueryRequest

# Response markers understood by QuerySimulator.
EMPTY = object()
NULL_OUTPUT = object()


def error_response(subtype: str = "error_during_execution", errors: Optional[List[str]] = None):
    return {"type": "result", "subtype": subtype, "errors": errors}


class QuerySimulator:
    """
    Query function stand-in that answers dispatches from a script.

    Responses are keyed by agent name; the agent is recognized by the
    "AGENT:<name>" marker its body carries. A response may be a dict
    (structured output), NULL_OUTPUT (success without structured output),
    EMPTY (no messages at all), an error_response() dict, an exception
    (raised) or a list consumed one per call with the last one repeating.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, delay: float = 0.0):
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self._counts: Dict[str, int] = {}

    def agent_of(self, request: QueryRequest) -> Optional[str]:
        text = f"{request.options.system_prompt or ''}\n{request.prompt}"
        for line in text.splitlines():
            if line.startswith("AGENT:"):
                return line[len("AGENT:"):].strip()
        return None

    def calls_for(self, agent: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["agent"] == agent]

    def _next_response(self, agent: Optional[str]) -> Any:
        response = self.responses.get(agent, NULL_OUTPUT)
        if isinstance(response, list):
            index = self._counts.get(agent, 0)
            self._counts[agent] = index + 1
            response = response[min(index, len(response) - 1)]
        return response

    async def __call__(self, request: QueryRequest):
        agent = self.agent_of(request)
        call = {"agent": agent, "request": request, "start": time.monotonic(), "end": None}
        self.calls.append(call)
        response = self._next_response(agent)

        if self.delay:
            await asyncio.sleep(self.delay)
        call["end"] = time.monotonic()

        if isinstance(response, BaseException):
            raise response
        if response is EMPTY:
            return
        yield {"type": "system", "subtype": "init"}
        if response is NULL_OUTPUT:
            yield {"type": "result", "subtype": "success", "result": "done"}
        elif isinstance(response, dict) and response.get("type") == "result":
            yield response
        else:
            yield {"type": "result", "subtype": "success", "structured_output": response}


class ProjectFiles:
    """Writes workflow, agent and prompt files into a project's .workflow-engine directory."""

    def __init__(self, root: Path):
        self.root = root
        self.base = root / ".workflow-engine"
        for kind in ("workflows", "agents", "prompts"):
            (self.base / kind).mkdir(parents=True, exist_ok=True)

    def add_agent(
        self,
        name: str,
        body: Optional[str] = None,
        tools: Optional[List[str]] = None,
        output_schema: Any = None,
        model: Optional[str] = None,
        **frontmatter: Any,
    ) -> Path:
        meta: Dict[str, Any] = {"name": name, "tools": tools or ["Read"]}
        if output_schema is not None:
            meta["outputSchema"] = output_schema
        if model is not None:
            meta["model"] = model
        meta.update(frontmatter)
        text = f"---\n{yaml.safe_dump(meta)}---\nAGENT:{name}\n{body or f'You are the {name} agent.'}\n"
        path = self.base / "agents" / f"{name}.md"
        path.write_text(text)
        return path

    def add_prompt(self, name: str, body: str) -> Path:
        path = self.base / "prompts" / f"{name}.md"
        path.write_text(f"---\nname: {name}\n---\n{body}\n")
        return path

    def add_workflow(self, name: str, definition: Any) -> Path:
        text = definition if isinstance(definition, str) else yaml.safe_dump(definition, sort_keys=False)
        path = self.base / "workflows" / f"{name}.yaml"
        path.write_text(text)
        return path


@pytest.fixture
def project(tmp_path):
    """A temporary project with an empty .workflow-engine directory."""
    return ProjectFiles(tmp_path)


@pytest.fixture
def simulator():
    return QuerySimulator()


@pytest.fixture
def make_engine(project):
    """Factory for engines bound to the temporary project; audit entries land in engine.sink_entries."""

    def factory(query_fn=None, handler_registry=None, checkpoint_saver=None, **config_kwargs):
        config = EngineConfig(
            working_directory=project.root,
            workflow_base_dir=project.root,
            **config_kwargs,
        )
        entries = []
        engine = WorkflowEngine(
            config,
            query_fn or QuerySimulator(),
            handler_registry=handler_registry,
            audit_sink=entries.append,
            checkpoint_saver=checkpoint_saver,
        )
        engine.sink_entries = entries
        return engine

    return factory


def audit_trail(engine) -> List[tuple]:
    """(step, status) pairs of an engine's audit log."""
    return [(entry.step, entry.status.value) for entry in engine.get_audit_log()]
