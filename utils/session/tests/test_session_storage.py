"""Tests for session models and storage"""

import json
from datetime import datetime, timedelta

import pytest

from utils.session.models import Blocker, SessionCheckpoint, SessionMetadata, SessionStatus
from utils.session.storage import FileSystemSessionStorage, MemorySessionStorage


def make_metadata(session_id="wf-2026-01-01-abcd1234", updated_at=None, status=SessionStatus.RUNNING):
    now = datetime.now()
    return SessionMetadata(
        session_id=session_id,
        spec_file="specs/feature.md",
        worktree_path="/tmp/worktree",
        started_at=now,
        updated_at=updated_at or now,
        status=status,
        branch_name="feature/x",
    )


def make_checkpoint(session_id="wf-2026-01-01-abcd1234"):
    return SessionCheckpoint(
        session_id=session_id,
        checkpoint_id="chk-1-deadbeef",
        created_at=datetime.now(),
        current_phase="execute",
        variables={"analysis": {"tasks": [{"id": "t1"}]}},
        completed_phases=["analyze", "plan"],
        changed_files=["src/a.py"],
        current_task_id="t1",
        tasks_completed=[],
        tasks_pending=["t1"],
        last_action="execute",
        resume_instructions='Resume from phase "execute" using --resume wf-2026-01-01-abcd1234',
    )


class TestSessionModels:
    """Tests for session model serialization"""

    def test_metadata_round_trip(self):
        """Metadata survives to_dict/from_dict with camelCase keys"""
        metadata = make_metadata()
        data = metadata.to_dict()

        assert data["id"] == metadata.session_id
        assert data["specFile"] == "specs/feature.md"
        assert data["status"] == "running"
        assert data["currentPhase"] == "init"
        assert SessionMetadata.from_dict(data) == metadata

    def test_checkpoint_engine_subset(self):
        """engine_checkpoint holds exactly the fields the engine restores"""
        checkpoint = make_checkpoint()
        assert set(checkpoint.engine_checkpoint()) == {
            "variables",
            "completedPhases",
            "changedFiles",
            "currentTaskId",
        }

    def test_checkpoint_falls_back_to_last_action(self):
        """A checkpoint without currentPhase resumes from lastAction"""
        data = make_checkpoint().to_dict()
        del data["currentPhase"]

        assert SessionCheckpoint.from_dict(data).current_phase == "execute"


class TestMemorySessionStorage:
    """Tests for MemorySessionStorage"""

    def test_save_and_load_metadata(self):
        storage = MemorySessionStorage()
        storage.save_metadata(make_metadata())

        loaded = storage.load_metadata("wf-2026-01-01-abcd1234")
        assert loaded is not None
        assert loaded.branch_name == "feature/x"
        assert storage.session_exists("wf-2026-01-01-abcd1234")

    def test_load_returns_copies(self):
        """Mutating a loaded object does not change what is stored"""
        storage = MemorySessionStorage()
        storage.save_metadata(make_metadata())

        loaded = storage.load_metadata("wf-2026-01-01-abcd1234")
        loaded.tasks_pending.append("t9")

        assert storage.load_metadata("wf-2026-01-01-abcd1234").tasks_pending == []

    def test_load_nonexistent(self):
        storage = MemorySessionStorage()
        assert storage.load_metadata("nope") is None
        assert storage.load_checkpoint("nope") is None
        assert storage.load_blocker("nope") is None
        assert storage.load_audit("nope") == []

    def test_delete_session_removes_everything(self):
        storage = MemorySessionStorage()
        storage.save_metadata(make_metadata())
        storage.save_checkpoint(make_checkpoint())
        storage.append_audit("wf-2026-01-01-abcd1234", {"step": "init", "status": "completed"})

        storage.delete_session("wf-2026-01-01-abcd1234")

        assert not storage.session_exists("wf-2026-01-01-abcd1234")
        assert storage.load_checkpoint("wf-2026-01-01-abcd1234") is None
        assert storage.load_audit("wf-2026-01-01-abcd1234") == []

    def test_list_sessions_filters_and_sorts(self):
        storage = MemorySessionStorage()
        now = datetime.now()
        storage.save_metadata(make_metadata("old", updated_at=now - timedelta(hours=1)))
        storage.save_metadata(make_metadata("new", updated_at=now))
        storage.save_metadata(make_metadata("paused", status=SessionStatus.PAUSED))

        running = storage.list_sessions(status=SessionStatus.RUNNING)
        assert [m.session_id for m in running] == ["new", "old"]
        assert len(storage.list_sessions(limit=1)) == 1


class TestFileSystemSessionStorage:
    """Tests for FileSystemSessionStorage"""

    @pytest.fixture
    def storage(self, tmp_path):
        return FileSystemSessionStorage(tmp_path / "sessions")

    def test_layout(self, storage, tmp_path):
        """Each record lands in its own file inside the session directory"""
        session_id = "wf-2026-01-01-abcd1234"
        storage.save_metadata(make_metadata(session_id))
        storage.save_checkpoint(make_checkpoint(session_id))
        storage.save_blocker(Blocker(session_id=session_id, timestamp=datetime.now(), details="stuck"))
        storage.append_audit(session_id, {"step": "init", "status": "completed"})

        session_dir = tmp_path / "sessions" / session_id
        assert (session_dir / "context.json").exists()
        assert (session_dir / "checkpoint.json").exists()
        assert (session_dir / "blocker.json").exists()
        assert (session_dir / "audit.jsonl").exists()

        context = json.loads((session_dir / "context.json").read_text())
        assert context["id"] == session_id
        blocker = json.loads((session_dir / "blocker.json").read_text())
        assert blocker["details"] == "stuck"

    def test_audit_is_append_only(self, storage, tmp_path):
        session_id = "wf-2026-01-01-abcd1234"
        storage.append_audit(session_id, {"step": "a", "status": "started"})
        storage.append_audit(session_id, {"step": "a", "status": "completed"})

        lines = (tmp_path / "sessions" / session_id / "audit.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert [e["status"] for e in storage.load_audit(session_id)] == ["started", "completed"]

    def test_checkpoint_round_trip(self, storage):
        checkpoint = make_checkpoint()
        storage.save_checkpoint(checkpoint)

        loaded = storage.load_checkpoint(checkpoint.session_id)
        assert loaded == checkpoint

    def test_list_sessions_skips_unreadable(self, storage, tmp_path):
        storage.save_metadata(make_metadata("good"))
        broken = tmp_path / "sessions" / "broken"
        broken.mkdir()
        (broken / "context.json").write_text("{not json")

        sessions = storage.list_sessions()
        assert [m.session_id for m in sessions] == ["good"]

    def test_delete_session(self, storage, tmp_path):
        storage.save_metadata(make_metadata("gone"))
        storage.delete_session("gone")

        assert not storage.session_exists("gone")
        assert not (tmp_path / "sessions" / "gone").exists()
