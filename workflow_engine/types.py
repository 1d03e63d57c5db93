"""
Core types for the workflow engine.

Defines the query function interface for the task-execution backend, the
audit entry shape, the engine configuration and the run result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Union,
)

if TYPE_CHECKING:
    from .context import ExecutionContext


# --- Messages from the task-execution backend ---

# Messages are plain dicts with a "type" key. Only "result" messages matter
# to the engine; they carry "subtype", "structured_output" and "errors".
Message = Dict[str, Any]

RESULT_MESSAGE_TYPE = "result"
RESULT_SUCCESS = "success"


def is_result_message(message: Any) -> bool:
    """Check whether a backend message is a terminal result message."""
    return isinstance(message, dict) and message.get("type") == RESULT_MESSAGE_TYPE


@dataclass
class QueryOptions:
    """Options passed to the query function alongside the prompt."""

    system_prompt: Optional[str] = None
    allowed_tools: List[str] = field(default_factory=list)
    output_format: Optional[Dict[str, Any]] = None
    model: Optional[str] = None
    cwd: Optional[str] = None
    permission_mode: Optional[str] = None
    allow_dangerously_skip_permissions: bool = False
    mcp_servers: Optional[Dict[str, Any]] = None
    setting_sources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (camelCase keys, as the backend expects)."""
        return {
            "systemPrompt": self.system_prompt,
            "allowedTools": list(self.allowed_tools),
            "outputFormat": self.output_format,
            "model": self.model,
            "cwd": self.cwd,
            "permissionMode": self.permission_mode,
            "allowDangerouslySkipPermissions": self.allow_dangerously_skip_permissions,
            "mcpServers": self.mcp_servers,
            "settingSources": list(self.setting_sources),
        }


@dataclass
class QueryRequest:
    """A single dispatch to the task-execution backend."""

    prompt: str
    options: QueryOptions = field(default_factory=QueryOptions)


# In production this wraps the agent CLI (see utils.agent.cli_executor);
# in tests it is replaced with a simulator.
QueryFunction = Callable[[QueryRequest], AsyncIterator[Message]]


# --- Audit ---


class AuditStatus(str, Enum):
    """Status recorded for a step transition."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def utc_timestamp() -> str:
    """ISO-8601 timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class AuditEntry:
    """Audit entry for a workflow step transition."""

    step: str
    status: AuditStatus
    timestamp: str = field(default_factory=utc_timestamp)
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data: Dict[str, Any] = {
            "step": self.step,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        """Create from dictionary."""
        return cls(
            step=data["step"],
            status=AuditStatus(data["status"]),
            timestamp=data.get("timestamp") or utc_timestamp(),
            metadata=data.get("metadata"),
        )


AuditSink = Callable[[AuditEntry], Union[None, Awaitable[None]]]


# --- Engine configuration ---


@dataclass
class EngineDefaults:
    """Fallback dispatch settings, overridden by a workflow's own defaults."""

    model: str = "opus"
    permission_mode: str = "bypassPermissions"
    setting_sources: List[str] = field(default_factory=lambda: ["project"])
    agent: Optional[str] = None


@dataclass
class EngineConfig:
    """
    Engine configuration.

    working_directory is the worktree agents run in; workflow_base_dir is where
    workflow files given as paths are resolved from.
    """

    working_directory: Path
    workflow_base_dir: Path
    defaults: EngineDefaults = field(default_factory=EngineDefaults)
    dry_run: bool = False
    mcp_servers: Optional[Dict[str, Any]] = None
    on_phase_complete: Optional[
        Callable[[str, "ExecutionContext"], Awaitable[None]]
    ] = None
    skip_step_names: List[str] = field(default_factory=list)
    skip_checks: bool = False
    session_id: Optional[str] = None
    branch_name: Optional[str] = None
    builtin_root: Optional[Path] = None
    audit_max_entries: int = 10000
    # Fallback limits for workflows whose safety block leaves them unset.
    max_step_timeout_ms: Optional[int] = None
    max_workflow_duration_ms: Optional[int] = None

    def __post_init__(self):
        self.working_directory = Path(self.working_directory)
        self.workflow_base_dir = Path(self.workflow_base_dir)
        if self.builtin_root is not None:
            self.builtin_root = Path(self.builtin_root)


# --- Run result ---


class RunStatus(str, Enum):
    """Terminal outcome of a run."""

    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass
class RunResult:
    """Result of a workflow run or resume."""

    status: RunStatus
    completed_phases: List[str] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    changed_files: List[str] = field(default_factory=list)
    paused_at_phase: Optional[str] = None
    blocker_details: Optional[str] = None
    error: Optional[str] = None
    checkpoint: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "completedPhases": list(self.completed_phases),
            "outputs": self.outputs,
            "changedFiles": list(self.changed_files),
            "pausedAtPhase": self.paused_at_phase,
            "blockerDetails": self.blocker_details,
            "error": self.error,
        }
