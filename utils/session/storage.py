"""
Storage abstraction for session persistence.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List, Dict, Any
import copy
import json
import logging
import shutil

from .models import Blocker, SessionCheckpoint, SessionMetadata, SessionStatus

logger = logging.getLogger(__name__)

CONTEXT_FILE = "context.json"
AUDIT_FILE = "audit.jsonl"
CHECKPOINT_FILE = "checkpoint.json"
BLOCKER_FILE = "blocker.json"


class SessionStorage(ABC):
    """Abstract storage interface for sessions"""

    @abstractmethod
    def save_metadata(self, metadata: SessionMetadata):
        """Persist session metadata"""
        pass

    @abstractmethod
    def load_metadata(self, session_id: str) -> Optional[SessionMetadata]:
        """Load session metadata"""
        pass

    @abstractmethod
    def append_audit(self, session_id: str, entry: Dict[str, Any]):
        """Append one audit entry to the session's audit trail"""
        pass

    @abstractmethod
    def load_audit(self, session_id: str) -> List[Dict[str, Any]]:
        """Load the session's audit trail in append order"""
        pass

    @abstractmethod
    def save_checkpoint(self, checkpoint: SessionCheckpoint):
        """Persist the latest checkpoint (replacing any previous one)"""
        pass

    @abstractmethod
    def load_checkpoint(self, session_id: str) -> Optional[SessionCheckpoint]:
        """Load the latest checkpoint"""
        pass

    @abstractmethod
    def save_blocker(self, blocker: Blocker):
        """Persist blocker details of a paused session"""
        pass

    @abstractmethod
    def load_blocker(self, session_id: str) -> Optional[Blocker]:
        """Load blocker details"""
        pass

    @abstractmethod
    def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
    ) -> List[SessionMetadata]:
        """Query sessions with filters"""
        pass

    @abstractmethod
    def session_exists(self, session_id: str) -> bool:
        """Check if session exists"""
        pass

    @abstractmethod
    def delete_session(self, session_id: str):
        """Delete a session"""
        pass


def _write_json(path: Path, data: Dict[str, Any]):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class FileSystemSessionStorage(SessionStorage):
    """
    Filesystem-based session storage.

    Layout:
        <sessions_dir>/<session_id>/context.json     session metadata
        <sessions_dir>/<session_id>/audit.jsonl      append-only audit trail
        <sessions_dir>/<session_id>/checkpoint.json  latest checkpoint
        <sessions_dir>/<session_id>/blocker.json     why the session paused
    """

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def _session_path(self, session_id: str) -> Path:
        path = self.sessions_dir / session_id
        path.mkdir(exist_ok=True)
        return path

    def save_metadata(self, metadata: SessionMetadata):
        """Save metadata to context.json"""
        _write_json(self._session_path(metadata.session_id) / CONTEXT_FILE, metadata.to_dict())

    def load_metadata(self, session_id: str) -> Optional[SessionMetadata]:
        """Load metadata from context.json"""
        data = _read_json(self.sessions_dir / session_id / CONTEXT_FILE)
        return SessionMetadata.from_dict(data) if data is not None else None

    def append_audit(self, session_id: str, entry: Dict[str, Any]):
        """Append a line to audit.jsonl"""
        audit_path = self._session_path(session_id) / AUDIT_FILE
        with open(audit_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")

    def load_audit(self, session_id: str) -> List[Dict[str, Any]]:
        """Read audit.jsonl"""
        audit_path = self.sessions_dir / session_id / AUDIT_FILE
        if not audit_path.exists():
            return []

        entries = []
        with open(audit_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(json.loads(line))
        return entries

    def save_checkpoint(self, checkpoint: SessionCheckpoint):
        """Save checkpoint.json"""
        _write_json(self._session_path(checkpoint.session_id) / CHECKPOINT_FILE, checkpoint.to_dict())

    def load_checkpoint(self, session_id: str) -> Optional[SessionCheckpoint]:
        """Load checkpoint.json"""
        data = _read_json(self.sessions_dir / session_id / CHECKPOINT_FILE)
        return SessionCheckpoint.from_dict(data) if data is not None else None

    def save_blocker(self, blocker: Blocker):
        """Save blocker.json"""
        _write_json(self._session_path(blocker.session_id) / BLOCKER_FILE, blocker.to_dict())

    def load_blocker(self, session_id: str) -> Optional[Blocker]:
        """Load blocker.json"""
        data = _read_json(self.sessions_dir / session_id / BLOCKER_FILE)
        return Blocker.from_dict(data) if data is not None else None

    def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
    ) -> List[SessionMetadata]:
        """Query sessions with filters"""
        sessions = []

        if not self.sessions_dir.exists():
            return []

        for session_dir in self.sessions_dir.iterdir():
            if not session_dir.is_dir():
                continue

            try:
                metadata = self.load_metadata(session_dir.name)
            except (OSError, ValueError, KeyError) as e:
                # Skip sessions that can't be loaded
                logger.warning(f"Could not load session {session_dir.name}: {e}")
                continue
            if metadata is None:
                continue
            if status and metadata.status != status:
                continue
            sessions.append(metadata)

        # Most recent first
        sessions.sort(key=lambda m: m.updated_at, reverse=True)
        return sessions[:limit]

    def session_exists(self, session_id: str) -> bool:
        """Check if session exists"""
        return (self.sessions_dir / session_id / CONTEXT_FILE).exists()

    def delete_session(self, session_id: str):
        """Delete a session directory"""
        session_path = self.sessions_dir / session_id
        if session_path.exists():
            shutil.rmtree(session_path)


class MemorySessionStorage(SessionStorage):
    """In-memory session storage for testing"""

    def __init__(self):
        self._metadata: Dict[str, SessionMetadata] = {}
        self._audit: Dict[str, List[Dict[str, Any]]] = {}
        self._checkpoints: Dict[str, SessionCheckpoint] = {}
        self._blockers: Dict[str, Blocker] = {}

    def save_metadata(self, metadata: SessionMetadata):
        # Store a deep copy to avoid mutation issues
        self._metadata[metadata.session_id] = copy.deepcopy(metadata)

    def load_metadata(self, session_id: str) -> Optional[SessionMetadata]:
        metadata = self._metadata.get(session_id)
        return copy.deepcopy(metadata) if metadata else None

    def append_audit(self, session_id: str, entry: Dict[str, Any]):
        self._audit.setdefault(session_id, []).append(copy.deepcopy(entry))

    def load_audit(self, session_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._audit.get(session_id, []))

    def save_checkpoint(self, checkpoint: SessionCheckpoint):
        self._checkpoints[checkpoint.session_id] = copy.deepcopy(checkpoint)

    def load_checkpoint(self, session_id: str) -> Optional[SessionCheckpoint]:
        checkpoint = self._checkpoints.get(session_id)
        return copy.deepcopy(checkpoint) if checkpoint else None

    def save_blocker(self, blocker: Blocker):
        self._blockers[blocker.session_id] = copy.deepcopy(blocker)

    def load_blocker(self, session_id: str) -> Optional[Blocker]:
        blocker = self._blockers.get(session_id)
        return copy.deepcopy(blocker) if blocker else None

    def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: int = 100,
    ) -> List[SessionMetadata]:
        sessions = [
            copy.deepcopy(metadata)
            for metadata in self._metadata.values()
            if not status or metadata.status == status
        ]
        sessions.sort(key=lambda m: m.updated_at, reverse=True)
        return sessions[:limit]

    def session_exists(self, session_id: str) -> bool:
        return session_id in self._metadata

    def delete_session(self, session_id: str):
        for store in (self._metadata, self._audit, self._checkpoints, self._blockers):
            store.pop(session_id, None)
