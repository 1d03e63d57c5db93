"""
Agent CLI Module

Query function that runs agent steps through the Claude CLI.
"""

from .cli_executor import CLIConfig, ClaudeCLIQuery, error_result

__all__ = [
    "CLIConfig",
    "ClaudeCLIQuery",
    "error_result",
]
