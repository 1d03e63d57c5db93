"""
Session management for workflow runs.

Persists each run's metadata, audit trail, checkpoint and blocker so a
paused run can be inspected and resumed later.
"""

from .models import (
    Blocker,
    SessionCheckpoint,
    SessionMetadata,
    SessionStatus,
)
from .storage import (
    SessionStorage,
    FileSystemSessionStorage,
    MemorySessionStorage,
)
from .session_manager import SessionManager

__all__ = [
    # Models
    "SessionMetadata",
    "SessionStatus",
    "SessionCheckpoint",
    "Blocker",
    # Storage
    "SessionStorage",
    "FileSystemSessionStorage",
    "MemorySessionStorage",
    # Manager
    "SessionManager",
]
