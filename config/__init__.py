"""
Workflow Engine Configuration Package.

This package contains the centralized settings workflow runs are built from.
"""

from config.manager import EnvironmentManager, configure_logging, env_manager
from config.types import ProjectInfo

# Re-export the singleton instance for easy access
env = env_manager

__all__ = [
    "EnvironmentManager",
    "configure_logging",
    "env_manager",
    "env",
    "ProjectInfo",
]
