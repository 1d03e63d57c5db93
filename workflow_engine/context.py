"""
Execution Context

Holds the mutable state of one workflow run: named variables, completed
phases, changed files and the per-task cursor. Serializes to and restores
from a checkpoint record.
"""

import asyncio
import fnmatch
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .conditions import evaluate_condition, resolve_path

# Variables a per-task child context sets for itself; never merged back.
TASK_VARIABLES = ("task", "taskIndex", "taskCount")


@dataclass
class Checkpoint:
    """Serializable snapshot of run state sufficient to resume later."""

    variables: Dict[str, Any] = field(default_factory=dict)
    completed_phases: List[str] = field(default_factory=list)
    changed_files: List[str] = field(default_factory=list)
    current_task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "variables": deepcopy(self.variables),
            "completedPhases": list(self.completed_phases),
            "changedFiles": list(self.changed_files),
            "currentTaskId": self.current_task_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        """Create from dictionary (camelCase or snake_case keys)."""
        return cls(
            variables=dict(data.get("variables") or {}),
            completed_phases=list(
                data.get("completedPhases", data.get("completed_phases")) or []
            ),
            changed_files=list(data.get("changedFiles", data.get("changed_files")) or []),
            current_task_id=data.get("currentTaskId", data.get("current_task_id")),
        )


class ExecutionContext:
    """
    Workflow execution context.

    The single mutable artifact all step executors read and update. Concurrent
    writers (children of a parallel step) go through commit(), which serializes
    them on write_lock.
    """

    def __init__(self, variables: Optional[Dict[str, Any]] = None):
        """
        Initialize execution context.

        Args:
            variables: Initial variables (e.g. specPath)
        """
        self.variables: Dict[str, Any] = dict(variables or {})
        self.completed_phases: List[str] = []
        self.changed_files: List[str] = []
        self.current_task_id: Optional[str] = None
        self.current_task_index: Optional[int] = None
        self.current_task_count: Optional[int] = None
        self.current_phase: Optional[str] = None
        self.write_lock = asyncio.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Get a variable by its exact name."""
        return self.variables.get(key, default)

    def set(self, key: str, value: Any):
        """Set a variable; the last write wins."""
        self.variables[key] = value

    async def commit(self, key: str, value: Any):
        """Set a variable through the single-writer lock."""
        async with self.write_lock:
            self.set(key, value)

    def resolve(self, path: str) -> Any:
        """
        Resolve a dot-notation path against the variables.

        Args:
            path: Dotted path (e.g., "analysis.tasks")

        Returns:
            Value at path, or None if any segment is missing
        """
        return resolve_path(path, self.variables)

    def evaluate(self, condition: str) -> bool:
        """Evaluate a condition expression; missing data is falsy."""
        return evaluate_condition(condition, self.variables)

    def mark_phase_completed(self, phase_name: str):
        if phase_name not in self.completed_phases:
            self.completed_phases.append(phase_name)

    def is_phase_completed(self, phase_name: str) -> bool:
        return phase_name in self.completed_phases

    def add_changed_file(self, file_path: str):
        if file_path not in self.changed_files:
            self.changed_files.append(file_path)

    def add_changed_files_from_result(self, result: Any):
        """
        Record files listed in an implementation result.

        Args:
            result: Step output; its "filesChanged" list of {"path": ...} is used
        """
        if not isinstance(result, dict):
            return
        for entry in result.get("filesChanged") or []:
            if isinstance(entry, dict) and isinstance(entry.get("path"), str):
                self.add_changed_file(entry["path"])
            elif isinstance(entry, str):
                self.add_changed_file(entry)

    def changed_files_match(self, patterns: Iterable[str]) -> bool:
        """Check whether any changed file matches one of the glob patterns."""
        patterns = list(patterns)
        return any(
            fnmatch.fnmatchcase(path, pattern)
            for path in self.changed_files
            for pattern in patterns
        )

    def template_vars(self) -> Dict[str, Any]:
        """Shallow copy of the variables for template rendering."""
        return dict(self.variables)

    def with_task(
        self,
        task: Dict[str, Any],
        index: int = 0,
        count: int = 1,
    ) -> "ExecutionContext":
        """
        Create a child context for one per-task iteration.

        The child starts from a copy of the parent's state and adds the
        current task under "task", "taskIndex" and "taskCount".
        """
        child = ExecutionContext(self.variables)
        child.set("task", task)
        child.set("taskIndex", index)
        child.set("taskCount", count)
        child.completed_phases = list(self.completed_phases)
        child.changed_files = list(self.changed_files)
        child.current_task_id = task.get("id") if isinstance(task, dict) else None
        child.current_task_index = index
        child.current_task_count = count
        child.current_phase = self.current_phase
        return child

    def merge_task_results(self, child: "ExecutionContext"):
        """
        Merge a per-task child context back into this one.

        Only keys the parent does not have yet are copied. A child write to an
        existing parent key is dropped and the parent value is kept, so tasks
        accumulate new outputs but cannot overwrite shared state.
        """
        for key, value in child.variables.items():
            if key in TASK_VARIABLES:
                continue
            if key not in self.variables:
                self.variables[key] = value

        for file_path in child.changed_files:
            self.add_changed_file(file_path)
        for phase in child.completed_phases:
            self.mark_phase_completed(phase)

    def to_checkpoint(self) -> Checkpoint:
        """Snapshot the run state."""
        return Checkpoint(
            variables=deepcopy(self.variables),
            completed_phases=list(self.completed_phases),
            changed_files=list(self.changed_files),
            current_task_id=self.current_task_id,
        )

    def restore(self, checkpoint: Checkpoint):
        """Replace this context's state with a checkpoint's."""
        self.variables = deepcopy(checkpoint.variables)
        self.completed_phases = list(checkpoint.completed_phases)
        self.changed_files = list(checkpoint.changed_files)
        self.current_task_id = checkpoint.current_task_id

    @classmethod
    def from_checkpoint(cls, data: Any) -> "ExecutionContext":
        """
        Create a context from a checkpoint.

        Args:
            data: Checkpoint instance or its dictionary form

        Returns:
            ExecutionContext with the checkpoint's state
        """
        checkpoint = data if isinstance(data, Checkpoint) else Checkpoint.from_dict(data)
        context = cls()
        context.restore(checkpoint)
        return context

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"ExecutionContext(variables={len(self.variables)}, "
            f"completed_phases={self.completed_phases}, "
            f"current_task_id={self.current_task_id})"
        )
