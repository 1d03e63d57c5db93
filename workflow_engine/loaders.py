"""
Loaders for agent and prompt markdown files with YAML frontmatter, and
composition of the request sent for an agent step.

Agent files define an agent's system prompt, tool set and default model.
Prompt files define reusable task templates with {{ }} placeholders.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .review import named_output_schema
from .templates import render_template

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)


class RunCondition(str, Enum):
    """When an agent runs. changed-files-match needs filePatterns to take effect."""

    ALWAYS = "always"
    CHANGED_FILES_MATCH = "changed-files-match"
    MANUAL = "manual"


class AgentFile(BaseModel):
    """Frontmatter of an agent definition file."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    output_schema: Optional[Union[str, Dict[str, Any]]] = Field(default=None, alias="outputSchema")
    run_condition: RunCondition = Field(default=RunCondition.ALWAYS, alias="runCondition")
    file_patterns: Optional[List[str]] = Field(default=None, alias="filePatterns")


class PromptFile(BaseModel):
    """Frontmatter of a prompt definition file."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    description: Optional[str] = None


@dataclass
class AgentDefinition:
    """Loaded agent: metadata plus the markdown body as system prompt."""

    name: str
    system_prompt: str
    tools: List[str] = field(default_factory=list)
    description: Optional[str] = None
    model: Optional[str] = None
    output_schema: Optional[Union[str, Dict[str, Any]]] = None
    run_condition: RunCondition = RunCondition.ALWAYS
    file_patterns: Optional[List[str]] = None
    file_path: Optional[Path] = None


@dataclass
class PromptDefinition:
    """Loaded prompt: metadata plus the template body."""

    name: str
    body: str
    description: Optional[str] = None
    file_path: Optional[Path] = None


def split_frontmatter(content: str, source: str = "document") -> Tuple[Dict[str, Any], str]:
    """
    Split a markdown document into its YAML frontmatter and body.

    Args:
        content: Full file content
        source: Name used in error messages

    Returns:
        Tuple of (frontmatter mapping, body text)

    Raises:
        ValidationError: If the frontmatter is missing or not a YAML mapping
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        raise ValidationError("Missing YAML frontmatter block", source)

    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML frontmatter: {e}", source)
    if not isinstance(data, dict):
        raise ValidationError("Frontmatter must be a mapping", source)
    return data, match.group(2)


def _read(file_path: Union[str, Path]) -> str:
    with open(file_path, "r", encoding="utf-8") as f:
        return f.read()


def load_agent_file(file_path: Union[str, Path]) -> AgentDefinition:
    """
    Load and validate a markdown agent definition file.

    The frontmatter configures the agent; the body becomes its system prompt.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the frontmatter is missing or invalid
    """
    path = Path(file_path)
    data, body = split_frontmatter(_read(path), str(path))
    try:
        meta = AgentFile.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid agent frontmatter: {e}", str(path)) from e

    return AgentDefinition(
        name=meta.name,
        description=meta.description,
        tools=list(meta.tools),
        model=meta.model,
        output_schema=meta.output_schema,
        run_condition=meta.run_condition,
        file_patterns=list(meta.file_patterns) if meta.file_patterns is not None else None,
        system_prompt=body.strip(),
        file_path=path,
    )


def load_prompt_file(file_path: Union[str, Path]) -> PromptDefinition:
    """
    Load and validate a markdown prompt definition file.

    The body is kept verbatim (trimmed) with its template placeholders.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the frontmatter is missing or invalid
    """
    path = Path(file_path)
    data, body = split_frontmatter(_read(path), str(path))
    try:
        meta = PromptFile.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid prompt frontmatter: {e}", str(path)) from e

    return PromptDefinition(
        name=meta.name,
        description=meta.description,
        body=body.strip(),
        file_path=path,
    )


# --- Composition ---


@dataclass
class AgentRequest:
    """Fully composed dispatch for an agent step."""

    prompt: str
    system_prompt: Optional[str]
    tools: List[str]
    model: str
    cwd: str
    output_schema: Optional[Dict[str, Any]] = None


def compose_agent_request(
    agent: Optional[AgentDefinition],
    prompt: Optional[PromptDefinition],
    variables: Dict[str, Any],
    builtins: Dict[str, Any],
    default_model: str,
    cwd: str,
    model_override: Optional[str] = None,
) -> AgentRequest:
    """
    Compose the request for an agent step. Pure: no I/O, no context writes.

    Args:
        agent: Loaded agent, if the step names one
        prompt: Loaded prompt, if the step names one
        variables: Context variables (plus resolved step input)
        builtins: specPath, worktreePath, sessionId, branchName and task vars
        default_model: Workflow default, else engine default
        cwd: Worktree path the agent runs in
        model_override: Step-level model

    Returns:
        AgentRequest ready for dispatch
    """
    template_vars = {**variables, **builtins}

    if prompt is not None:
        user_prompt = render_template(prompt.body, template_vars)
        system_prompt = agent.system_prompt if agent is not None else None
    elif agent is not None:
        # Agent-only step: the agent body is the task itself.
        user_prompt = render_template(agent.system_prompt, template_vars)
        system_prompt = None
    else:
        raise ValueError("compose_agent_request needs an agent or a prompt")

    model = model_override or (agent.model if agent is not None else None) or default_model

    output_schema = None
    if agent is not None and isinstance(agent.output_schema, dict):
        output_schema = agent.output_schema
    elif agent is not None and isinstance(agent.output_schema, str):
        output_schema = named_output_schema(agent.output_schema)
        if output_schema is None:
            logger.warning(f"Agent {agent.name} references unknown output schema: {agent.output_schema}")

    return AgentRequest(
        prompt=user_prompt,
        system_prompt=system_prompt,
        tools=list(agent.tools) if agent is not None else [],
        model=model,
        cwd=cwd,
        output_schema=output_schema,
    )
