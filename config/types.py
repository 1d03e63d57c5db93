from typing import Dict, Optional
from pydantic import BaseModel, Field


class ProjectInfo(BaseModel):
    """Model representing the project a workflow runs against"""

    project_root: Optional[str] = None
    worktree_path: Optional[str] = None
    branch_name: Optional[str] = None
    session_id: Optional[str] = None
    additional_paths: Dict[str, str] = Field(default_factory=dict)

