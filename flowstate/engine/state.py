"""
State Management for Workflow Engine.

This module declares the shape of a run's state (``StateSchema``), the
read-only view steps receive (``RunState``) and the merge rules used to fold
each step's partial update into it. State is never mutated in place: every
merge returns a new ``RunState``.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional
import uuid

from pydantic import BaseModel, Field

from flowstate.engine.errors import UnknownFieldError, UnsetFieldError


Reducer = Callable[[Any, Any], Any]


def replace(old: Any, new: Any) -> Any:
    """Merge policy where the incoming value always wins."""
    return new


def append(old: Any, new: Any) -> List[Any]:
    """Merge policy that concatenates list values."""
    return list(old or []) + list(new or [])


@dataclass(frozen=True)
class FieldSpec:
    """
    Declaration of a single state field.

    Attributes:
        default: Zero-argument supplier of the initial value (optional)
        reducer: ``(old, incoming) -> merged`` merge function (optional,
            full replacement when omitted)
        description: Human-readable description
    """

    default: Optional[Callable[[], Any]] = None
    reducer: Optional[Reducer] = None
    description: str = ""

    def __post_init__(self):
        if self.default is not None and not callable(self.default):
            raise ValueError("FieldSpec default must be a zero-argument callable")
        if self.reducer is not None and not callable(self.reducer):
            raise ValueError("FieldSpec reducer must be callable")

    @property
    def has_default(self) -> bool:
        return self.default is not None


class RunState(Mapping):
    """
    Read-only view of a run's current state.

    Indexing a declared field that has not been set raises
    ``UnsetFieldError``; indexing an undeclared field raises
    ``UnknownFieldError``. Both are ``KeyError`` subclasses, so
    ``state.get(name, default)`` behaves like a plain dict.
    """

    __slots__ = ("_schema", "_values")

    def __init__(self, schema: "StateSchema", values: Optional[Dict[str, Any]] = None):
        self._schema = schema
        self._values = dict(values or {})

    @property
    def schema(self) -> "StateSchema":
        return self._schema

    def __getitem__(self, key: str) -> Any:
        if key in self._values:
            return self._values[key]
        if key in self._schema:
            raise UnsetFieldError(key)
        raise UnknownFieldError(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def is_set(self, key: str) -> bool:
        """Check whether a field currently holds a value."""
        return key in self._values

    def to_dict(self) -> Dict[str, Any]:
        """Convert state to a plain (shallow-copied) dictionary."""
        return dict(self._values)

    def __repr__(self) -> str:
        return f"RunState({self._values!r})"


class StateSchema:
    """
    The ordered set of fields a workflow's state may hold.

    Reducers and defaults are resolved once here into lookup tables, so a
    merge never inspects the values it is merging.

    Usage:
        schema = StateSchema(
            tweet=FieldSpec(),
            images=FieldSpec(default=list, reducer=append),
            attempts=FieldSpec(default=lambda: 0),
        )
        state = schema.initialize({"tweet": "hello"})
        state = schema.apply_update(state, {"images": [image]})
    """

    def __init__(self, fields: Optional[Mapping] = None, **kwargs: FieldSpec):
        declared: Dict[str, FieldSpec] = {}
        for name, spec in list((fields or {}).items()) + list(kwargs.items()):
            if not name:
                raise ValueError("State field name cannot be empty")
            if name in declared:
                raise ValueError(f"State field '{name}' is declared more than once")
            if not isinstance(spec, FieldSpec):
                raise ValueError(f"State field '{name}' must be declared with a FieldSpec")
            declared[name] = spec

        self._fields = declared
        self._reducers: Dict[str, Reducer] = {
            name: spec.reducer or replace for name, spec in declared.items()
        }
        self._defaults: Dict[str, Callable[[], Any]] = {
            name: spec.default for name, spec in declared.items() if spec.has_default
        }

    @property
    def fields(self) -> Dict[str, FieldSpec]:
        return dict(self._fields)

    @property
    def field_names(self) -> List[str]:
        return list(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def reducer_for(self, name: str) -> Reducer:
        if name not in self._reducers:
            raise UnknownFieldError(name)
        return self._reducers[name]

    def initialize(self, initial_input: Optional[Mapping] = None) -> RunState:
        """
        Build the starting state of a run.

        Defaults are applied for every field missing from the input, then the
        input is merged with the same rules ``apply_update`` uses mid-run.
        """
        initial_input = initial_input or {}
        values = {
            name: supplier()
            for name, supplier in self._defaults.items()
            if name not in initial_input
        }
        return self.apply_update(RunState(self, values), initial_input)

    def apply_update(self, state: RunState, update: Optional[Mapping]) -> RunState:
        """
        Merge a partial update into state and return the new state.

        Fields with a reducer are merged with it; the rest are replaced.
        A reducer field that is not yet set simply takes the incoming value.
        Fields absent from the update are carried over unchanged.
        """
        if not update:
            return state

        unknown = [name for name in update if name not in self._fields]
        if unknown:
            raise UnknownFieldError(unknown[0])

        values = state.to_dict()
        for name, incoming in update.items():
            if name in values:
                values[name] = self._reducers[name](values[name], incoming)
            else:
                values[name] = incoming
        return RunState(self, values)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the schema to a dictionary."""
        return {
            name: {
                "has_default": spec.has_default,
                "reducer": getattr(self._reducers[name], "__name__", str(self._reducers[name])),
                "description": spec.description,
            }
            for name, spec in self._fields.items()
        }

    def __repr__(self) -> str:
        return f"StateSchema(fields={self.field_names})"


class StateSnapshot(BaseModel):
    """A snapshot of state at a specific point in execution."""

    timestamp: datetime = Field(default_factory=datetime.now)
    node_name: str
    state_data: Dict[str, Any]
    step: int = 0


class StateManager:
    """
    Owns the state of a single run and its snapshot history.

    This provides debugging capabilities by tracking state changes
    throughout the workflow execution.
    """

    def __init__(self, schema: StateSchema, run_id: Optional[str] = None):
        self.schema = schema
        self.run_id = run_id or str(uuid.uuid4())
        self.history: List[StateSnapshot] = []
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self._current_state: Optional[RunState] = None

    @property
    def current_state(self) -> Optional[RunState]:
        """Get the current state."""
        return self._current_state

    def initialize(self, initial_input: Optional[Mapping] = None) -> RunState:
        """Initialize the run state from schema defaults and caller input."""
        self._current_state = self.schema.initialize(initial_input)
        self.started_at = datetime.now()
        return self._current_state

    def update(self, node_name: str, update: Optional[Mapping]) -> RunState:
        """Merge a step's update into the current state and record a snapshot."""
        new_state = self.schema.apply_update(self._current_state, update)

        self.history.append(StateSnapshot(
            node_name=node_name,
            state_data=new_state.to_dict(),
            step=len(self.history) + 1,
        ))
        self._current_state = new_state
        return new_state

    def finalize(self) -> Optional[RunState]:
        """Mark the run as complete."""
        self.completed_at = datetime.now()
        return self._current_state

    def discard(self) -> None:
        """Drop the in-progress state (used on cancellation)."""
        self._current_state = None
        self.completed_at = datetime.now()

    def get_history(self) -> List[Dict[str, Any]]:
        """Get the state history as a list of dictionaries."""
        return [
            {
                "timestamp": s.timestamp.isoformat(),
                "node": s.node_name,
                "step": s.step,
                "state": s.state_data
            }
            for s in self.history
        ]
