"""
Handler registry for 'code' steps.

Maps handler names to functions called as ``handler(context, input)``.
Handlers that take a third parameter also receive the engine's HandlerDeps,
and coroutine handlers are awaited.
"""

import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

if TYPE_CHECKING:
    from ..context import ExecutionContext
    from ..types import EngineConfig, QueryFunction


@dataclass
class HandlerDeps:
    """
    Dependencies the engine passes to handlers.

    Lets handlers dispatch their own agent queries, read the engine
    configuration, and persist checkpoints when a saver is configured.
    """

    query_fn: "QueryFunction"
    config: "EngineConfig"
    checkpoint_saver: Optional[Callable[["ExecutionContext"], Awaitable[None]]] = None


HandlerFunction = Callable[..., Union[Any, Awaitable[Any]]]


def accepts_deps(handler: HandlerFunction) -> bool:
    """Check whether a handler takes a third positional parameter for HandlerDeps."""
    try:
        parameters = inspect.signature(handler).parameters.values()
    except (TypeError, ValueError):
        # Builtins without introspectable signatures get the two-argument form.
        return False
    positional = 0
    for parameter in parameters:
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 3


def handler_args(
    handler: HandlerFunction,
    context: "ExecutionContext",
    input_value: Any,
    deps: HandlerDeps,
) -> Tuple[Any, ...]:
    """Positional arguments for a handler call."""
    if accepts_deps(handler):
        return (context, input_value, deps)
    return (context, input_value)


class HandlerRegistry:
    """Registry of handler functions available to code steps."""

    def __init__(self):
        self._handlers: Dict[str, HandlerFunction] = {}

    def register(self, name: str, handler: HandlerFunction):
        """
        Register a handler.

        Args:
            name: Handler name referenced by code steps
            handler: Handler function, sync or async
        """
        self._handlers[name] = handler

    def get(self, name: str) -> HandlerFunction:
        """
        Get handler by name.

        Raises:
            ValueError: If no handler is registered under that name
        """
        if name not in self._handlers:
            raise ValueError(f"No handler registered with name: {name}")
        return self._handlers[name]

    def has(self, name: str) -> bool:
        return name in self._handlers

    def list(self) -> List[str]:
        return list(self._handlers.keys())
