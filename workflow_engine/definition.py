"""
Workflow Definition

Parse, validate, and represent workflow definitions from YAML files.

A workflow is an ordered list of phases; each phase is a step, and steps
form a tagged union discriminated by an explicit ``type`` or, for agent
steps, by the presence of ``agent``/``prompt``:

    name: spec-implementation
    version: 1
    defaults:
      model: opus
    safety:
      maxLoopRetries: 3
    phases:
      - name: analyze
        agent: analyzer
        prompt: analyze-spec
        output: analysis
      - name: review-fix
        type: loop
        condition: review.hasActionableIssues
        maxRetries: 2
        onExhausted: escalate
        steps:
          - name: review
            agent: reviewer
            output: review
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .conditions import parse_condition
from .errors import ConditionSyntaxError, ValidationError

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    """Step kinds. Agent steps have no explicit ``type`` in YAML."""

    AGENT = "agent"
    CODE = "code"
    PARALLEL = "parallel"
    LOOP = "loop"
    PER_TASK = "per-task"


class ExhaustedPolicy(str, Enum):
    """What a loop does when its retries run out with the condition still true."""

    ESCALATE = "escalate"
    WARN = "warn"
    FAIL = "fail"


EXPLICIT_KINDS = [StepKind.CODE, StepKind.PARALLEL, StepKind.LOOP, StepKind.PER_TASK]


@dataclass
class AgentStep:
    """Dispatch a composed agent/prompt request to the query function."""

    name: str
    agent: Optional[str] = None
    prompt: Optional[str] = None
    model: Optional[str] = None
    output: Optional[str] = None
    input: Optional[Union[str, Dict[str, Any]]] = None
    enabled: bool = True
    condition: Optional[str] = None
    fail_when: Optional[str] = None
    kind: StepKind = field(default=StepKind.AGENT, init=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name}
        for key, value in (
            ("agent", self.agent),
            ("prompt", self.prompt),
            ("model", self.model),
            ("output", self.output),
            ("input", self.input),
            ("condition", self.condition),
            ("failWhen", self.fail_when),
        ):
            if value is not None:
                result[key] = value
        if not self.enabled:
            result["enabled"] = False
        return result


@dataclass
class CodeStep:
    """Invoke a registered handler function."""

    name: str
    handler: str
    input: Optional[Union[str, Dict[str, Any]]] = None
    output: Optional[str] = None
    kind: StepKind = field(default=StepKind.CODE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "type": self.kind.value, "handler": self.handler}
        if self.input is not None:
            result["input"] = self.input
        if self.output is not None:
            result["output"] = self.output
        return result


@dataclass
class ParallelStep:
    """Run child steps concurrently."""

    name: str
    steps: List["Step"] = field(default_factory=list)
    output: Optional[str] = None
    kind: StepKind = field(default=StepKind.PARALLEL, init=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind.value,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.output is not None:
            result["output"] = self.output
        return result


@dataclass
class LoopStep:
    """Repeat child steps while a condition holds, up to max_retries attempts."""

    name: str
    condition: str
    max_retries: int
    on_exhausted: ExhaustedPolicy = ExhaustedPolicy.ESCALATE
    steps: List["Step"] = field(default_factory=list)
    output: Optional[str] = None
    kind: StepKind = field(default=StepKind.LOOP, init=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind.value,
            "condition": self.condition,
            "maxRetries": self.max_retries,
            "onExhausted": self.on_exhausted.value,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.output is not None:
            result["output"] = self.output
        return result


@dataclass
class PerTaskStep:
    """Run child steps once per element of a context-held task list."""

    name: str
    source: str
    steps: List["Step"] = field(default_factory=list)
    output: Optional[str] = None
    kind: StepKind = field(default=StepKind.PER_TASK, init=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind.value,
            "source": self.source,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.output is not None:
            result["output"] = self.output
        return result


Step = Union[AgentStep, CodeStep, ParallelStep, LoopStep, PerTaskStep]


def iter_steps(steps: List[Step]):
    """Yield every step in a tree, depth first."""
    for step in steps:
        yield step
        yield from iter_steps(getattr(step, "steps", []))


@dataclass
class WorkflowDefaults:
    """Default dispatch settings declared by a workflow."""

    agent: Optional[str] = None
    model: Optional[str] = None
    permission_mode: Optional[str] = None
    setting_sources: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefaults":
        """Create from dictionary."""
        sources = data.get("settingSources")
        if sources is not None and (
            not isinstance(sources, list) or not all(isinstance(s, str) for s in sources)
        ):
            raise ValidationError("'settingSources' must be a list of strings", "defaults")
        return cls(
            agent=_optional_str(data, "agent", "defaults"),
            model=_optional_str(data, "model", "defaults"),
            permission_mode=_optional_str(data, "permissionMode", "defaults"),
            setting_sources=sources,
        )


@dataclass
class SafetyConfig:
    """Safety limits applied by the engine."""

    max_loop_retries: Optional[int] = None
    max_step_timeout_ms: Optional[int] = None
    max_workflow_duration_ms: Optional[int] = None
    fail_on_step_error: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyConfig":
        """Create from dictionary."""
        fail_on_step_error = data.get("failOnStepError", True)
        if not isinstance(fail_on_step_error, bool):
            raise ValidationError("'failOnStepError' must be a boolean", "safety")
        return cls(
            max_loop_retries=_optional_positive_int(data, "maxLoopRetries", "safety"),
            max_step_timeout_ms=_optional_positive_int(data, "maxStepTimeoutMs", "safety"),
            max_workflow_duration_ms=_optional_positive_int(
                data, "maxWorkflowDurationMs", "safety"
            ),
            fail_on_step_error=fail_on_step_error,
        )


@dataclass
class WorkflowDefinition:
    """
    Workflow definition.

    Represents a complete, validated workflow parsed from YAML.
    """

    name: str
    version: Union[int, str] = 1
    defaults: WorkflowDefaults = field(default_factory=WorkflowDefaults)
    safety: Optional[SafetyConfig] = None
    phases: List[Step] = field(default_factory=list)

    def phase_index(self, name: str) -> int:
        """Index of a phase by name, or -1."""
        for index, phase in enumerate(self.phases):
            if phase.name == name:
                return index
        return -1

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary.

        Returns:
            Dictionary in the YAML key layout
        """
        result: Dict[str, Any] = {"name": self.name, "version": self.version}
        defaults = {
            key: value
            for key, value in (
                ("agent", self.defaults.agent),
                ("model", self.defaults.model),
                ("permissionMode", self.defaults.permission_mode),
                ("settingSources", self.defaults.setting_sources),
            )
            if value is not None
        }
        if defaults:
            result["defaults"] = defaults
        if self.safety is not None:
            result["safety"] = {
                key: value
                for key, value in (
                    ("maxLoopRetries", self.safety.max_loop_retries),
                    ("maxStepTimeoutMs", self.safety.max_step_timeout_ms),
                    ("maxWorkflowDurationMs", self.safety.max_workflow_duration_ms),
                    ("failOnStepError", self.safety.fail_on_step_error),
                )
                if value is not None
            }
        result["phases"] = [phase.to_dict() for phase in self.phases]
        return result

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"WorkflowDefinition(name='{self.name}', "
            f"version='{self.version}', phases={len(self.phases)})"
        )


# --- Field helpers ---


def _required_str(data: Dict[str, Any], key: str, path: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' must be a non-empty string", path)
    return value


def _optional_str(data: Dict[str, Any], key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' must be a non-empty string", path)
    return value


def _optional_positive_int(data: Dict[str, Any], key: str, path: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"'{key}' must be a positive integer", path)
    return value


def _optional_input(data: Dict[str, Any], path: str) -> Optional[Union[str, Dict[str, Any]]]:
    value = data.get("input")
    if value is None or isinstance(value, (str, dict)):
        return value
    raise ValidationError("'input' must be a string or a mapping", path)


def _condition(data: Dict[str, Any], key: str, path: str, required: bool = False) -> Optional[str]:
    value = _required_str(data, key, path) if required else _optional_str(data, key, path)
    if value is not None:
        try:
            parse_condition(value)
        except ConditionSyntaxError as e:
            raise ValidationError(f"invalid '{key}': {e}", path) from e
    return value


def _child_steps(data: Dict[str, Any], path: str) -> List[Step]:
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list):
        raise ValidationError("'steps' must be a list", path)
    return [
        validate_step(raw, f"{path}.steps[{index}]") for index, raw in enumerate(raw_steps)
    ]


# --- Validation entry points ---


def validate_step(raw: Any, path: str = "step") -> Step:
    """
    Validate a raw step mapping into a typed step.

    Nested steps of parallel, loop and per-task steps are validated
    recursively through this same function.

    Args:
        raw: Parsed YAML for one step
        path: Location of the step, used in error messages

    Returns:
        Typed step

    Raises:
        ValidationError: If the step is malformed
    """
    if not isinstance(raw, dict):
        raise ValidationError("Step must be a mapping", path)

    step_type = raw.get("type")
    if step_type is None or step_type == StepKind.AGENT.value:
        if step_type is None and "agent" not in raw and "prompt" not in raw:
            raise ValidationError(
                "Step has no 'type' and no 'agent' or 'prompt' field", path
            )
        kind = StepKind.AGENT
    else:
        allowed = [k.value for k in EXPLICIT_KINDS]
        if step_type not in allowed:
            raise ValidationError(
                f"Unknown step type: {step_type} (expected one of: {', '.join(allowed)})",
                path,
            )
        kind = StepKind(step_type)

    name = _required_str(raw, "name", path)
    path = f"{path}({name})"

    if kind == StepKind.AGENT:
        enabled = raw.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValidationError("'enabled' must be a boolean", path)
        step = AgentStep(
            name=name,
            agent=_optional_str(raw, "agent", path),
            prompt=_optional_str(raw, "prompt", path),
            model=_optional_str(raw, "model", path),
            output=_optional_str(raw, "output", path),
            input=_optional_input(raw, path),
            enabled=enabled,
            condition=_condition(raw, "condition", path),
            fail_when=_condition(raw, "failWhen", path),
        )
        if step.agent is None and step.prompt is None:
            raise ValidationError("Agent step needs an 'agent' or a 'prompt'", path)
        return step

    if kind == StepKind.CODE:
        return CodeStep(
            name=name,
            handler=_required_str(raw, "handler", path),
            input=_optional_input(raw, path),
            output=_optional_str(raw, "output", path),
        )

    if kind == StepKind.PARALLEL:
        return ParallelStep(
            name=name,
            steps=_child_steps(raw, path),
            output=_optional_str(raw, "output", path),
        )

    if kind == StepKind.LOOP:
        max_retries = raw.get("maxRetries")
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 1:
            raise ValidationError("'maxRetries' must be an integer >= 1", path)
        on_exhausted = raw.get("onExhausted", ExhaustedPolicy.ESCALATE.value)
        try:
            policy = ExhaustedPolicy(on_exhausted)
        except ValueError:
            raise ValidationError(
                f"'onExhausted' must be one of: {', '.join(p.value for p in ExhaustedPolicy)}",
                path,
            )
        return LoopStep(
            name=name,
            condition=_condition(raw, "condition", path, required=True),
            max_retries=max_retries,
            on_exhausted=policy,
            steps=_child_steps(raw, path),
            output=_optional_str(raw, "output", path),
        )

    if kind == StepKind.PER_TASK:
        return PerTaskStep(
            name=name,
            source=_required_str(raw, "source", path),
            steps=_child_steps(raw, path),
            output=_optional_str(raw, "output", path),
        )

    raise ValidationError(f"Unhandled step kind: {kind}", path)


def validate_workflow_definition(raw: Any) -> WorkflowDefinition:
    """
    Validate an entire workflow definition from parsed YAML.

    Args:
        raw: Parsed YAML document

    Returns:
        WorkflowDefinition instance

    Raises:
        ValidationError: If the definition or any step is malformed
    """
    if not isinstance(raw, dict):
        raise ValidationError("Workflow definition must be a mapping")

    name = _required_str(raw, "name", "workflow")
    version = raw.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, (int, str)):
        raise ValidationError("'version' must be an integer or a string", "workflow")

    raw_defaults = raw.get("defaults") or {}
    if not isinstance(raw_defaults, dict):
        raise ValidationError("'defaults' must be a mapping", "workflow")
    raw_safety = raw.get("safety")
    if raw_safety is not None and not isinstance(raw_safety, dict):
        raise ValidationError("'safety' must be a mapping", "workflow")

    raw_phases = raw.get("phases")
    if not isinstance(raw_phases, list) or not raw_phases:
        raise ValidationError("Workflow must have at least one phase", "workflow")

    phases = [
        validate_step(phase, f"phases[{index}]") for index, phase in enumerate(raw_phases)
    ]

    seen = set()
    for phase in phases:
        if phase.name in seen:
            raise ValidationError(f"Duplicate phase name '{phase.name}'", "workflow")
        seen.add(phase.name)

    return WorkflowDefinition(
        name=name,
        version=version,
        defaults=WorkflowDefaults.from_dict(raw_defaults),
        safety=SafetyConfig.from_dict(raw_safety) if raw_safety is not None else None,
        phases=phases,
    )


def load_workflow_yaml(yaml_str: str) -> WorkflowDefinition:
    """
    Parse and validate a workflow from a YAML string.

    Raises:
        ValidationError: If the YAML is invalid or the definition is malformed
    """
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML: {e}")
    return validate_workflow_definition(data)


def load_workflow_file(file_path: Union[str, Path]) -> WorkflowDefinition:
    """
    Load and validate a workflow from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML is invalid or the definition is malformed
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"Workflow file not found: {file_path}")

    with open(path, "r", encoding="utf-8") as f:
        yaml_str = f.read()

    definition = load_workflow_yaml(yaml_str)
    logger.debug(f"Loaded {definition!r} from {path}")
    return definition
