"""
Session data models for persisted workflow runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class SessionStatus(str, Enum):
    """Status of a workflow session"""
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class SessionMetadata:
    """Metadata for a session, stored as context.json"""
    session_id: str
    spec_file: str
    worktree_path: str
    started_at: datetime
    updated_at: datetime
    status: SessionStatus = SessionStatus.RUNNING
    branch_name: Optional[str] = None
    workflow: Optional[str] = None
    current_phase: str = "init"

    # Progress
    phases_completed: List[str] = field(default_factory=list)
    tasks_completed: List[str] = field(default_factory=list)
    tasks_pending: List[str] = field(default_factory=list)

    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata to dictionary for serialization"""
        return {
            "id": self.session_id,
            "specFile": self.spec_file,
            "workflow": self.workflow,
            "status": self.status.value,
            "currentPhase": self.current_phase,
            "worktreePath": self.worktree_path,
            "branchName": self.branch_name,
            "phasesCompleted": self.phases_completed,
            "tasksCompleted": self.tasks_completed,
            "tasksPending": self.tasks_pending,
            "startedAt": self.started_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetadata":
        """Create metadata from dictionary"""
        return cls(
            session_id=data["id"],
            spec_file=data.get("specFile", ""),
            worktree_path=data.get("worktreePath", ""),
            started_at=datetime.fromisoformat(data["startedAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
            status=SessionStatus(data.get("status", SessionStatus.RUNNING.value)),
            branch_name=data.get("branchName"),
            workflow=data.get("workflow"),
            current_phase=data.get("currentPhase", "init"),
            phases_completed=data.get("phasesCompleted", []),
            tasks_completed=data.get("tasksCompleted", []),
            tasks_pending=data.get("tasksPending", []),
            completed_at=_parse_time(data.get("completedAt")),
        )


@dataclass
class SessionCheckpoint:
    """Resumable run state, stored as checkpoint.json"""
    session_id: str
    checkpoint_id: str
    created_at: datetime
    current_phase: str
    variables: Dict[str, Any] = field(default_factory=dict)
    completed_phases: List[str] = field(default_factory=list)
    changed_files: List[str] = field(default_factory=list)
    current_task_id: Optional[str] = None
    tasks_completed: List[str] = field(default_factory=list)
    tasks_pending: List[str] = field(default_factory=list)
    last_action: Optional[str] = None
    resume_instructions: Optional[str] = None

    def engine_checkpoint(self) -> Dict[str, Any]:
        """The subset the engine restores an execution context from"""
        return {
            "variables": self.variables,
            "completedPhases": self.completed_phases,
            "changedFiles": self.changed_files,
            "currentTaskId": self.current_task_id,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert checkpoint to dictionary for serialization"""
        return {
            "sessionId": self.session_id,
            "checkpointId": self.checkpoint_id,
            "createdAt": self.created_at.isoformat(),
            "currentPhase": self.current_phase,
            "variables": self.variables,
            "completedPhases": self.completed_phases,
            "changedFiles": self.changed_files,
            "currentTaskId": self.current_task_id,
            "tasksCompleted": self.tasks_completed,
            "tasksPending": self.tasks_pending,
            "lastAction": self.last_action,
            "resumeInstructions": self.resume_instructions,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionCheckpoint":
        """Create checkpoint from dictionary"""
        return cls(
            session_id=data["sessionId"],
            checkpoint_id=data["checkpointId"],
            created_at=datetime.fromisoformat(data["createdAt"]),
            # Older checkpoints only recorded the last action
            current_phase=data.get("currentPhase") or data.get("lastAction") or "",
            variables=data.get("variables") or {},
            completed_phases=data.get("completedPhases") or [],
            changed_files=data.get("changedFiles") or [],
            current_task_id=data.get("currentTaskId"),
            tasks_completed=data.get("tasksCompleted") or [],
            tasks_pending=data.get("tasksPending") or [],
            last_action=data.get("lastAction"),
            resume_instructions=data.get("resumeInstructions"),
        )


@dataclass
class Blocker:
    """Why a paused session stopped, stored as blocker.json"""
    session_id: str
    timestamp: datetime
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Blocker":
        return cls(
            session_id=data["sessionId"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            details=data["details"],
        )
