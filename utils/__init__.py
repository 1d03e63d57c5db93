"""Utility modules for the workflow engine: session persistence and the agent CLI."""
