"""
Tests for WorkflowResolver.
"""

import pytest

from workflow_engine import BUILTIN_ROOT
from workflow_engine.errors import ResolutionError
from workflow_engine.resolver import (
    ArtifactKind,
    ResolutionSource,
    WorkflowResolver,
    is_within,
)


@pytest.fixture
def roots(tmp_path):
    project = tmp_path / "project"
    builtin = tmp_path / "builtin"
    for kind in ("workflows", "agents", "prompts"):
        (project / ".workflow-engine" / kind).mkdir(parents=True)
        (builtin / kind).mkdir(parents=True)
    return project, builtin


class TestResolve:
    """Tests for two-tier name resolution"""

    def test_builtin_fallback(self, roots):
        project, builtin = roots
        (builtin / "agents" / "fixer.md").write_text("x")

        resolved = WorkflowResolver(project, builtin).resolve_agent("fixer")

        assert resolved.source == ResolutionSource.BUILTIN
        assert resolved.path == (builtin / "agents" / "fixer.md").resolve()

    def test_project_overrides_builtin(self, roots):
        project, builtin = roots
        (builtin / "prompts" / "fix.md").write_text("builtin")
        (project / ".workflow-engine" / "prompts" / "fix.md").write_text("project")

        resolved = WorkflowResolver(project, builtin).resolve_prompt("fix")

        assert resolved.source == ResolutionSource.PROJECT
        assert resolved.path.read_text() == "project"

    def test_extension_optional(self, roots):
        project, builtin = roots
        (builtin / "workflows" / "flow.yaml").write_text("x")
        resolver = WorkflowResolver(project, builtin)

        assert resolver.resolve_workflow("flow").path == resolver.resolve_workflow("flow.yaml").path

    def test_not_found_lists_searched_paths(self, roots):
        project, builtin = roots

        with pytest.raises(ResolutionError) as exc_info:
            WorkflowResolver(project, builtin).resolve(ArtifactKind.AGENT, "ghost")

        message = str(exc_info.value)
        assert "agent not found: ghost.md" in message
        assert "1. " in message and "2. " in message
        assert "Hint: Create ghost.md in .workflow-engine/agents/" in message

    def test_without_builtin_root(self, roots):
        project, _ = roots
        resolver = WorkflowResolver(project)

        assert len(resolver.search_dirs(ArtifactKind.WORKFLOW)) == 1
        with pytest.raises(ResolutionError):
            resolver.resolve_workflow("anything")

    @pytest.mark.parametrize("name", ["../secrets", "../../etc/passwd", "a/../../b"])
    def test_traversal_rejected(self, roots, name):
        project, builtin = roots
        with pytest.raises(ResolutionError, match="escapes"):
            WorkflowResolver(project, builtin).resolve_agent(name)

    def test_empty_name(self, roots):
        project, builtin = roots
        with pytest.raises(ResolutionError, match="must not be empty"):
            WorkflowResolver(project, builtin).resolve_prompt("  ")

    def test_kind_accepts_string(self, roots):
        project, builtin = roots
        (builtin / "workflows" / "w.yaml").write_text("x")
        assert WorkflowResolver(project, builtin).resolve("workflow", "w").source == ResolutionSource.BUILTIN

    def test_packaged_builtins(self, tmp_path):
        """The installed package ships the spec-implementation workflow and its agents"""
        resolver = WorkflowResolver(tmp_path, BUILTIN_ROOT)

        assert resolver.resolve_workflow("spec-implementation").source == ResolutionSource.BUILTIN
        for agent in ("spec-analyzer", "implementer", "code-reviewer", "spec-reviewer", "fixer"):
            assert resolver.resolve_agent(agent).path.is_file()


class TestIsWithin:
    def test_is_within(self, tmp_path):
        assert is_within(tmp_path / "a" / "b", tmp_path)
        assert is_within(tmp_path, tmp_path)
        assert not is_within(tmp_path / ".." / "x", tmp_path)
