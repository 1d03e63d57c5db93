"""
Session manager for persisted workflow runs.

A session records one run of a workflow: its metadata, an append-only audit
trail, the latest checkpoint and, when paused, the blocker that stopped it.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from workflow_engine.context import ExecutionContext
from workflow_engine.types import AuditEntry, AuditStatus, RunResult, RunStatus

from .models import Blocker, SessionCheckpoint, SessionMetadata, SessionStatus
from .storage import SessionStorage


class SessionManager:
    """Manages workflow sessions on top of a storage backend"""

    def __init__(self, storage: SessionStorage):
        self.storage = storage
        self.session_id: Optional[str] = None
        self._active_sessions: Dict[str, SessionMetadata] = {}
        self.logger = logging.getLogger(__name__)

    def create_session(
        self,
        spec_file: str,
        worktree_path: str,
        branch_name: Optional[str] = None,
        workflow: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> SessionMetadata:
        """
        Create a new session and make it the current one.

        Args:
            spec_file: Spec file the run implements
            worktree_path: Directory the agents work in
            branch_name: Git branch of the worktree
            workflow: Workflow name or path
            session_id: Optional custom session ID. If not provided, generates one.

        Returns:
            Created SessionMetadata

        Raises:
            ValueError: If a session with that ID already exists
        """
        if session_id is None:
            session_id = self._generate_session_id()

        if self.storage.session_exists(session_id):
            raise ValueError(f"Session {session_id} already exists")

        now = datetime.now()
        metadata = SessionMetadata(
            session_id=session_id,
            spec_file=spec_file,
            worktree_path=worktree_path,
            branch_name=branch_name,
            workflow=workflow,
            started_at=now,
            updated_at=now,
        )
        self.storage.save_metadata(metadata)
        self._active_sessions[session_id] = metadata
        self.session_id = session_id

        self.append_audit_entry(
            AuditEntry(
                step="init",
                status=AuditStatus.COMPLETED,
                metadata={
                    "session_id": session_id,
                    "worktree": worktree_path,
                    "branch": branch_name,
                    "spec_file": spec_file,
                },
            )
        )
        self.logger.info(f"Created session {session_id}")
        return metadata

    def resume_session(self, session_id: str) -> SessionMetadata:
        """
        Make an existing session current again and mark it running.

        Raises:
            ValueError: If the session doesn't exist
        """
        metadata = self.get_session(session_id)
        if metadata is None:
            raise ValueError(f"Session {session_id} not found")

        self.session_id = session_id
        self._update(metadata, status=SessionStatus.RUNNING)
        self.logger.info(f"Resuming session {session_id} at phase {metadata.current_phase}")
        return metadata

    def get_session(self, session_id: str) -> Optional[SessionMetadata]:
        """
        Retrieve session metadata by ID.

        Args:
            session_id: Session identifier

        Returns:
            SessionMetadata if found, None otherwise
        """
        if session_id in self._active_sessions:
            return self._active_sessions[session_id]

        metadata = self.storage.load_metadata(session_id)
        if metadata:
            self._active_sessions[session_id] = metadata
        return metadata

    def append_audit_entry(self, entry: AuditEntry):
        """
        Append an engine audit entry to the current session.

        Usable directly as the engine's audit sink. Does nothing when no
        session is current.
        """
        if self.session_id is None:
            return
        self.storage.append_audit(self.session_id, entry.to_dict())

    def get_audit_entries(self, session_id: Optional[str] = None) -> List[AuditEntry]:
        """
        Get all audit entries of a session.

        Args:
            session_id: Session identifier (defaults to the current session)
        """
        session_id = session_id or self.session_id
        if session_id is None:
            return []
        return [AuditEntry.from_dict(entry) for entry in self.storage.load_audit(session_id)]

    def save_checkpoint(
        self,
        current_phase: str,
        variables: Dict[str, Any],
        completed_phases: Optional[List[str]] = None,
        changed_files: Optional[List[str]] = None,
        current_task_id: Optional[str] = None,
        tasks_completed: Optional[List[str]] = None,
        tasks_pending: Optional[List[str]] = None,
    ) -> Optional[SessionCheckpoint]:
        """
        Save a checkpoint for the current session and update its progress.

        Returns:
            The saved checkpoint, or None when no session is current
        """
        if self.session_id is None:
            return None

        checkpoint = SessionCheckpoint(
            session_id=self.session_id,
            checkpoint_id=self._generate_checkpoint_id(),
            created_at=datetime.now(),
            current_phase=current_phase,
            variables=variables,
            completed_phases=list(completed_phases or []),
            changed_files=list(changed_files or []),
            current_task_id=current_task_id,
            tasks_completed=list(tasks_completed or []),
            tasks_pending=list(tasks_pending or []),
            last_action=current_phase,
            resume_instructions=f'Resume from phase "{current_phase}" using --resume {self.session_id}',
        )
        self.storage.save_checkpoint(checkpoint)

        metadata = self.get_session(self.session_id)
        if metadata is not None:
            updates = {
                "current_phase": current_phase,
                "tasks_completed": checkpoint.tasks_completed,
                "tasks_pending": checkpoint.tasks_pending,
            }
            if completed_phases is not None:
                updates["phases_completed"] = checkpoint.completed_phases
            self._update(metadata, **updates)

        self.logger.debug(f"Saved checkpoint {checkpoint.checkpoint_id} at phase {current_phase}")
        return checkpoint

    def save_context_checkpoint(
        self,
        context: ExecutionContext,
        current_phase: Optional[str] = None,
    ) -> Optional[SessionCheckpoint]:
        """Save a checkpoint from an execution context."""
        snapshot = context.to_checkpoint()
        return self.save_checkpoint(
            current_phase=current_phase or context.current_phase or "init",
            variables=snapshot.variables,
            completed_phases=snapshot.completed_phases,
            changed_files=snapshot.changed_files,
            current_task_id=snapshot.current_task_id,
            tasks_completed=_as_list(snapshot.variables.get("tasksCompleted")),
            tasks_pending=_as_list(snapshot.variables.get("tasksPending")),
        )

    async def checkpoint_saver(self, context: ExecutionContext):
        """Async adapter passed to the engine for the save-checkpoint handler."""
        self.save_context_checkpoint(context)

    def load_checkpoint(self, session_id: str) -> Optional[SessionCheckpoint]:
        """Load the latest checkpoint of a session, or None if it has none."""
        return self.storage.load_checkpoint(session_id)

    def write_blocker(self, details: str):
        """Record why the current session paused and mark it paused."""
        if self.session_id is None:
            return

        self.storage.save_blocker(
            Blocker(session_id=self.session_id, timestamp=datetime.now(), details=details)
        )
        metadata = self.get_session(self.session_id)
        if metadata is not None:
            self._update(metadata, status=SessionStatus.PAUSED)

    def get_blocker(self, session_id: str) -> Optional[Blocker]:
        return self.storage.load_blocker(session_id)

    def complete_session(self, result: RunResult):
        """
        Record the final outcome of the current session.

        Args:
            result: Result of the engine run
        """
        if self.session_id is None:
            return

        succeeded = result.status == RunStatus.COMPLETED
        metadata = self.get_session(self.session_id)
        if metadata is not None:
            self._update(
                metadata,
                status=SessionStatus.COMPLETED if succeeded else SessionStatus.FAILED,
                phases_completed=list(result.completed_phases),
                completed_at=datetime.now(),
            )

        self.append_audit_entry(
            AuditEntry(
                step="complete",
                status=AuditStatus.COMPLETED if succeeded else AuditStatus.FAILED,
                metadata={
                    "completedPhases": list(result.completed_phases),
                    "error": result.error,
                },
            )
        )
        self._active_sessions.pop(self.session_id, None)

    def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
    ) -> List[SessionMetadata]:
        """
        List sessions, most recently updated first.

        Args:
            status: Filter by status
            limit: Maximum number of sessions to return
        """
        return self.storage.list_sessions(status=status, limit=limit)

    def delete_session(self, session_id: str):
        """Delete a session permanently."""
        self._active_sessions.pop(session_id, None)
        self.storage.delete_session(session_id)
        if self.session_id == session_id:
            self.session_id = None

    def _update(self, metadata: SessionMetadata, **changes):
        for key, value in changes.items():
            setattr(metadata, key, value)
        metadata.updated_at = datetime.now()
        self.storage.save_metadata(metadata)

    @staticmethod
    def _generate_session_id() -> str:
        """Generate unique session ID"""
        return f"wf-{datetime.now().strftime('%Y-%m-%d')}-{uuid4().hex[:8]}"

    @staticmethod
    def _generate_checkpoint_id() -> str:
        millis = int(datetime.now().timestamp() * 1000)
        return f"chk-{millis}-{uuid4().hex[:8]}"


def _as_list(value: Any) -> List[str]:
    return list(value) if isinstance(value, list) else []
