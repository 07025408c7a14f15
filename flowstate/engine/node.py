"""
Step Definition for Workflow Engine.

Steps are the building blocks of a workflow. Each step is a function
that receives the current (read-only) state and returns a partial update:
a dict holding only the fields it wants to change.
"""

from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from dataclasses import dataclass, field
import asyncio
import functools


StepHandler = Callable[[Mapping], Union[Optional[Mapping], Awaitable[Optional[Mapping]]]]


@dataclass
class Step:
    """
    A named step in the workflow graph.

    Attributes:
        name: Unique identifier for the step
        handler: Function that processes state (sync or async)
        description: Human-readable description
        metadata: Additional step metadata
    """

    name: str
    handler: StepHandler
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate the step after initialization."""
        if not self.name:
            raise ValueError("Step name cannot be empty")
        if not callable(self.handler):
            raise ValueError(f"Handler for step '{self.name}' must be callable")

    @property
    def is_async(self) -> bool:
        """Check if the handler is an async function."""
        handler = self.handler
        if isinstance(handler, functools.partial):
            handler = handler.func
        return asyncio.iscoroutinefunction(handler) or asyncio.iscoroutinefunction(
            getattr(handler, "__call__", None)
        )

    async def execute(self, state: Mapping) -> Dict[str, Any]:
        """
        Execute the step handler with the given state.

        Handles both sync and async handlers transparently. Errors raised by
        the handler propagate unchanged; the executor attaches the step name.

        Args:
            state: The current run state (read-only)

        Returns:
            The partial update (empty dict when the handler returned None)
        """
        if self.is_async:
            result = await self.handler(state)
        else:
            # Run sync handler in executor to not block
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(
                None,
                functools.partial(self.handler, state)
            )

        if result is None:
            return {}

        if isinstance(result, Mapping):
            return dict(result)

        raise TypeError(
            f"Step '{self.name}' handler must return a dict or None, "
            f"got {type(result).__name__}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the step to a dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "handler": getattr(self.handler, "__name__", type(self.handler).__name__),
            "metadata": self.metadata,
        }


def passthrough(state: Mapping) -> Dict[str, Any]:
    """Step handler that changes nothing. Useful as a pure routing point."""
    return {}


def create_step_from_function(
    func: StepHandler,
    name: Optional[str] = None,
    description: str = ""
) -> Step:
    """
    Create a Step instance from a function.

    Args:
        func: The handler function
        name: Step name (defaults to function name)
        description: Human-readable description

    Returns:
        A Step instance
    """
    return Step(
        name=name or func.__name__,
        handler=func,
        description=description or (func.__doc__ or "").strip(),
    )
