"""
Name Resolver

Two-tier lookup for workflow, agent and prompt files:

  1. Project level  ({project_root}/.workflow-engine/{kind}s/)  -- highest priority
  2. Builtin level  ({builtin_root}/{kind}s/)                   -- fallback

First match wins, so a project overrides a builtin artifact simply by
providing a file with the same name.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .errors import ResolutionError

logger = logging.getLogger(__name__)

PROJECT_DIR_NAME = ".workflow-engine"


class ArtifactKind(str, Enum):
    """Kinds of named artifacts."""

    WORKFLOW = "workflow"
    AGENT = "agent"
    PROMPT = "prompt"

    @property
    def directory(self) -> str:
        return f"{self.value}s"

    @property
    def extension(self) -> str:
        return ".yaml" if self is ArtifactKind.WORKFLOW else ".md"


class ResolutionSource(str, Enum):
    """Which tier supplied a resolved file."""

    PROJECT = "project"
    BUILTIN = "builtin"


@dataclass(frozen=True)
class ResolvedFile:
    """Resolved artifact path and the tier it came from."""

    path: Path
    source: ResolutionSource


def is_within(path: Path, root: Path) -> bool:
    """Check that a path does not escape the given root directory."""
    relative = os.path.relpath(os.path.abspath(path), os.path.abspath(root))
    return relative != ".." and not relative.startswith(".." + os.sep) and not os.path.isabs(relative)


class WorkflowResolver:
    """Resolves workflow, agent and prompt names to files."""

    def __init__(
        self,
        project_root: Union[str, Path],
        builtin_root: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize resolver.

        Args:
            project_root: Root of the project whose overrides take priority
            builtin_root: Directory holding the builtin workflows/agents/prompts
        """
        self.project_root = Path(project_root).resolve()
        self.builtin_root = Path(builtin_root).resolve() if builtin_root else None
        self.logger = logging.getLogger(__name__)

    def search_dirs(self, kind: ArtifactKind):
        """Directories searched for a kind, in priority order."""
        dirs = [(ResolutionSource.PROJECT, self.project_root / PROJECT_DIR_NAME / kind.directory)]
        if self.builtin_root is not None:
            dirs.append((ResolutionSource.BUILTIN, self.builtin_root / kind.directory))
        return dirs

    def resolve(self, kind: Union[ArtifactKind, str], name: str) -> ResolvedFile:
        """
        Resolve a named artifact.

        Args:
            kind: Artifact kind (workflow, agent, prompt)
            name: Artifact name, with or without extension

        Returns:
            ResolvedFile with absolute path and source tier

        Raises:
            ResolutionError: If the name escapes a search directory or is not found
        """
        kind = ArtifactKind(kind)
        if not name or not name.strip():
            raise ResolutionError(f"{kind.value} name must not be empty")

        filename = name if name.endswith(kind.extension) else name + kind.extension
        searched = []

        for source, directory in self.search_dirs(kind):
            candidate = directory / filename
            if not is_within(candidate, directory):
                raise ResolutionError(
                    f'{kind.value} name "{name}" escapes search directory "{directory}"'
                )
            searched.append(candidate)
            if candidate.is_file():
                self.logger.debug(f"Resolved {kind.value} '{name}' from {source.value}: {candidate}")
                return ResolvedFile(path=candidate.resolve(), source=source)

        locations = "\n".join(f"  {i}. {path}" for i, path in enumerate(searched, start=1))
        raise ResolutionError(
            f"{kind.value} not found: {filename}. Searched:\n{locations}\n"
            f"Hint: Create {filename} in {PROJECT_DIR_NAME}/{kind.directory}/ "
            f"to override the builtin."
        )

    def resolve_workflow(self, name: str) -> ResolvedFile:
        return self.resolve(ArtifactKind.WORKFLOW, name)

    def resolve_agent(self, name: str) -> ResolvedFile:
        return self.resolve(ArtifactKind.AGENT, name)

    def resolve_prompt(self, name: str) -> ResolvedFile:
        return self.resolve(ArtifactKind.PROMPT, name)
