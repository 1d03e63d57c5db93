"""Built-in handlers for code steps."""

from .aggregate_reviews import aggregate_reviews_handler
from .create_issues import create_issues_handler
from .registry import HandlerDeps, HandlerFunction, HandlerRegistry, accepts_deps, handler_args
from .save_checkpoint import mark_task_completed, save_checkpoint_handler


def create_default_registry() -> HandlerRegistry:
    """Create a registry with the built-in handlers registered."""
    registry = HandlerRegistry()
    registry.register("create-issues", create_issues_handler)
    registry.register("save-checkpoint", save_checkpoint_handler)
    registry.register("aggregate-reviews", aggregate_reviews_handler)
    return registry


__all__ = [
    "HandlerDeps",
    "HandlerFunction",
    "HandlerRegistry",
    "accepts_deps",
    "handler_args",
    "create_default_registry",
    "create_issues_handler",
    "save_checkpoint_handler",
    "aggregate_reviews_handler",
    "mark_task_completed",
]
