"""
Graph Definition for Workflow Engine.

``Graph`` is the mutable builder: register steps, edges and conditional
edges, then ``compile()`` it. Compilation validates the whole structure at
once and returns an immutable ``CompiledGraph`` that any number of runs can
share.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Literal, Optional, Set, Tuple
import inspect
import logging
import typing
import uuid

from flowstate.engine.errors import (
    ConfigurationError,
    DeadEndError,
    GraphValidationError,
    UnknownStepError,
)
from flowstate.engine.node import Step, StepHandler, create_step_from_function
from flowstate.engine.state import StateSchema


logger = logging.getLogger(__name__)


# Terminal sentinel
END = "__END__"


Router = Callable[[Mapping], Any]


def normalize_label(label: Any) -> Any:
    """Enum members route by their value so ``Route.YES`` and ``"YES"`` agree."""
    if isinstance(label, Enum):
        return label.value
    return label


def enumerate_router_labels(router: Router) -> Optional[FrozenSet[Any]]:
    """
    Statically list the labels a router can return.

    Works when the router's return annotation is an ``Enum`` subclass or a
    ``Literal[...]``. Returns None when the label set cannot be known.
    """
    target = router if inspect.isfunction(router) or inspect.ismethod(router) else getattr(router, "__call__", None)
    if target is None:
        return None
    try:
        hints = typing.get_type_hints(target)
    except Exception:
        return None

    annotation = hints.get("return")
    if annotation is None:
        return None
    if typing.get_origin(annotation) is Literal:
        return frozenset(normalize_label(arg) for arg in typing.get_args(annotation))
    if inspect.isclass(annotation) and issubclass(annotation, Enum):
        return frozenset(member.value for member in annotation)
    return None


@dataclass(frozen=True)
class Edge:
    """An unconditional edge connecting two steps."""
    source: str
    target: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "target": self.target}


@dataclass(frozen=True)
class ConditionalEdge:
    """
    A conditional edge that routes to different steps based on state.

    The router receives the current state and returns a label. The routes
    mapping sends each label to a target step (or END). ``labels`` is the
    closed set of labels the router is known to produce.
    """
    source: str
    router: Router
    routes: Mapping
    labels: Optional[FrozenSet[Any]] = None

    def resolve(self, state: Mapping) -> Tuple[Any, str]:
        """Evaluate the router and return ``(label, target)``."""
        label = normalize_label(self.router(state))
        if label not in self.routes:
            raise ConfigurationError(self.source, label, list(self.routes))
        return label, self.routes[label]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "router": getattr(self.router, "__name__", type(self.router).__name__),
            "routes": {str(label): target for label, target in self.routes.items()},
        }


@dataclass(frozen=True)
class CompiledGraph:
    """
    An immutable, validated workflow graph.

    Holds no per-run state, so it can be shared by concurrent runs.

    Attributes:
        schema: The state schema of the workflow
        entry_point: Name of the first step to execute
        steps: step_name -> Step
        edges: source -> target for direct edges
        conditional_edges: source -> ConditionalEdge
        cycles: Cycles that exit through a router (termination depends on state)
    """

    schema: StateSchema
    entry_point: str
    steps: Mapping
    edges: Mapping
    conditional_edges: Mapping
    name: str = "Unnamed Workflow"
    description: str = ""
    cycles: Tuple[Tuple[str, ...], ...] = ()
    graph_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    terminal: str = END

    def get_step(self, name: str) -> Step:
        step = self.steps.get(name)
        if step is None:
            raise UnknownStepError(name)
        return step

    def get_next_node(self, current: str, state: Mapping) -> Tuple[str, Optional[Any]]:
        """
        Pick the successor of ``current``.

        Returns:
            ``(next_step, label)`` where label is None for direct edges

        Raises:
            ConfigurationError: The router returned an unmapped label
            DeadEndError: The step has no outgoing edge
        """
        if current in self.edges:
            return self.edges[current], None

        if current in self.conditional_edges:
            label, target = self.conditional_edges[current].resolve(state)
            return target, label

        raise DeadEndError(current)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph structure to a dictionary."""
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "description": self.description,
            "schema": self.schema.to_dict(),
            "nodes": {name: step.to_dict() for name, step in self.steps.items()},
            "edges": dict(self.edges),
            "conditional_edges": {
                name: edge.to_dict()
                for name, edge in self.conditional_edges.items()
            },
            "entry_point": self.entry_point,
            "cycles": [list(cycle) for cycle in self.cycles],
        }

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]
        lines.append('    __START__(("START"))')

        for name in self.steps:
            label = name.replace("_", " ").title()
            lines.append(f'    {name}["{label}"]')

        lines.append(f'    {END}(("END"))')
        lines.append(f"    __START__ --> {self.entry_point}")

        for source, target in self.edges.items():
            lines.append(f"    {source} --> {target}")

        for source, cond in self.conditional_edges.items():
            for route_key, target in cond.routes.items():
                lines.append(f"    {source} -.->|{route_key}| {target}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CompiledGraph(name='{self.name}', steps={list(self.steps)}, "
            f"entry='{self.entry_point}')"
        )


class Graph:
    """
    Builder for a workflow graph.

    Registration never fails on structure: problems are collected and
    reported together by ``validate()`` / ``compile()``.

    Usage:
        graph = Graph(schema, name="Example")
        graph.add_node("fetch", fetch)
        graph.add_node("summarize", summarize)
        graph.add_edge("fetch", "summarize")
        graph.add_conditional_edges("summarize", check, {"RETRY": "fetch", "DONE": END})
        compiled = graph.compile()
    """

    def __init__(self, schema: StateSchema, name: str = "Unnamed Workflow", description: str = ""):
        self.schema = schema
        self.name = name
        self.description = description
        self.nodes: Dict[str, Step] = {}
        self.entry_point: Optional[str] = None
        self._registrations: List[str] = []
        self._edges: List[Edge] = []
        self._conditional_edges: List[ConditionalEdge] = []

    def add_node(self, name: str, handler: StepHandler, description: str = "") -> "Graph":
        """
        Add a step to the graph. The first step added becomes the entry
        point unless ``set_entry_point`` says otherwise.

        Returns:
            Self for chaining
        """
        step = create_step_from_function(handler, name, description)
        self._registrations.append(name)
        self.nodes.setdefault(name, step)

        if self.entry_point is None:
            self.entry_point = name

        return self

    def add_edge(self, source: str, target: str) -> "Graph":
        """Add a direct edge from source to target (or END)."""
        self._edges.append(Edge(source=source, target=target))
        return self

    def add_conditional_edges(
        self,
        source: str,
        router: Router,
        routes: Mapping,
        labels: Optional[Iterable[Any]] = None,
    ) -> "Graph":
        """
        Add a conditional edge from source step.

        Args:
            source: Source step name
            router: Pure function of state returning a label
            routes: Dict mapping labels to target steps (or END)
            labels: Every label the router may return; inferred from the
                router's ``Enum`` / ``Literal`` return annotation if omitted

        Returns:
            Self for chaining
        """
        normalized = {normalize_label(label): target for label, target in routes.items()}
        if labels is not None:
            known = frozenset(normalize_label(label) for label in labels)
        else:
            known = enumerate_router_labels(router)

        self._conditional_edges.append(ConditionalEdge(
            source=source,
            router=router,
            routes=MappingProxyType(normalized),
            labels=known,
        ))
        return self

    def set_entry_point(self, name: str) -> "Graph":
        """Set the entry point of the graph."""
        self.entry_point = name
        return self

    def validate(self) -> List[str]:
        """
        Validate the graph structure.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: List[str] = []

        if not self.nodes:
            errors.append("Graph must have at least one step")
            return errors

        seen: Set[str] = set()
        for name in self._registrations:
            if name == END:
                errors.append(f"'{END}' is reserved for the terminal sentinel")
            elif name in seen:
                errors.append(f"Step '{name}' is registered more than once")
            seen.add(name)

        if not self.entry_point:
            errors.append("Graph must have an entry point")
        elif self.entry_point not in self.nodes:
            errors.append(f"Entry point '{self.entry_point}' not found in steps")

        edges, conditional = self._index_edges(errors)

        for node_name in self.nodes:
            if node_name not in edges and node_name not in conditional:
                errors.append(f"Step '{node_name}' has no outgoing edge")

        if self.entry_point in self.nodes:
            orphans = set(self.nodes) - self._reachable(edges, conditional)
            if orphans:
                errors.append(f"Orphan steps (not reachable): {sorted(orphans)}")

        for cycle, exits in self._find_cycles(edges, conditional):
            if not exits:
                errors.append(f"Cycle {list(cycle)} has no conditional exit and can never end")

        return errors

    def compile(self) -> CompiledGraph:
        """
        Validate and freeze the graph.

        Raises:
            GraphValidationError: Listing every structural problem found
        """
        errors = self.validate()
        if errors:
            raise GraphValidationError(errors)

        edges, conditional = self._index_edges([])
        cycles = tuple(cycle for cycle, _ in self._find_cycles(edges, conditional))
        for cycle in cycles:
            logger.debug(
                f"Graph '{self.name}' has a router-governed cycle {list(cycle)}; "
                f"termination relies on state and the run's max_steps"
            )

        return CompiledGraph(
            schema=self.schema,
            entry_point=self.entry_point,
            steps=MappingProxyType(dict(self.nodes)),
            edges=MappingProxyType(edges),
            conditional_edges=MappingProxyType(conditional),
            name=self.name,
            description=self.description,
            cycles=cycles,
        )

    def _index_edges(self, errors: List[str]) -> Tuple[Dict[str, str], Dict[str, ConditionalEdge]]:
        edges: Dict[str, str] = {}
        conditional: Dict[str, ConditionalEdge] = {}

        for edge in self._edges:
            if edge.source not in self.nodes:
                errors.append(f"Edge source '{edge.source}' not found in steps")
                continue
            if edge.target != END and edge.target not in self.nodes:
                errors.append(f"Edge target '{edge.target}' from '{edge.source}' not found in steps")
                continue
            if edge.source in edges:
                errors.append(f"Step '{edge.source}' has more than one direct edge")
                continue
            edges[edge.source] = edge.target

        for cond in self._conditional_edges:
            if cond.source not in self.nodes:
                errors.append(f"Conditional edge source '{cond.source}' not found in steps")
                continue
            if not cond.routes:
                errors.append(f"Conditional edge from '{cond.source}' has no routes")
                continue
            if cond.source in conditional:
                errors.append(f"Step '{cond.source}' has more than one conditional edge")
                continue
            if cond.source in edges:
                errors.append(
                    f"Step '{cond.source}' has both a direct and a conditional edge"
                )
                continue

            bad_targets = [
                f"'{target}' (label {label!r})"
                for label, target in cond.routes.items()
                if target != END and target not in self.nodes
            ]
            if bad_targets:
                errors.append(
                    f"Route targets from '{cond.source}' not found in steps: {', '.join(bad_targets)}"
                )
                continue

            if cond.labels is not None:
                unmapped = [label for label in cond.labels if label not in cond.routes]
                if unmapped:
                    errors.append(
                        f"Router for '{cond.source}' can return unmapped labels: "
                        f"{sorted(map(str, unmapped))}"
                    )
                    continue

            conditional[cond.source] = cond

        return edges, conditional

    def _successors(
        self, name: str, edges: Dict[str, str], conditional: Dict[str, ConditionalEdge]
    ) -> List[str]:
        if name in edges:
            return [edges[name]]
        if name in conditional:
            return list(dict.fromkeys(conditional[name].routes.values()))
        return []

    def _reachable(self, edges: Dict[str, str], conditional: Dict[str, ConditionalEdge]) -> Set[str]:
        """Get all steps reachable from the entry point."""
        reachable: Set[str] = set()
        to_visit = [self.entry_point]

        while to_visit:
            node = to_visit.pop()
            if node in reachable or node == END:
                continue
            reachable.add(node)
            to_visit.extend(self._successors(node, edges, conditional))

        return reachable

    def _find_cycles(
        self, edges: Dict[str, str], conditional: Dict[str, ConditionalEdge]
    ) -> List[Tuple[Tuple[str, ...], bool]]:
        """
        Find strongly connected components that form cycles (Tarjan).

        Returns:
            ``(cycle, exits)`` pairs; ``exits`` is True when some router in
            the cycle has a route leaving it
        """
        index: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        stack: List[str] = []
        on_stack: Set[str] = set()
        components: List[List[str]] = []
        counter = [0]

        def visit(name: str) -> None:
            index[name] = lowlink[name] = counter[0]
            counter[0] += 1
            stack.append(name)
            on_stack.add(name)

            for succ in self._successors(name, edges, conditional):
                if succ == END:
                    continue
                if succ not in index:
                    visit(succ)
                    lowlink[name] = min(lowlink[name], lowlink[succ])
                elif succ in on_stack:
                    lowlink[name] = min(lowlink[name], index[succ])

            if lowlink[name] == index[name]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == name:
                        break
                components.append(component)

        for name in self.nodes:
            if name not in index:
                visit(name)

        cycles = []
        for component in components:
            members = set(component)
            is_cycle = len(component) > 1 or component[0] in self._successors(
                component[0], edges, conditional
            )
            if not is_cycle:
                continue
            exits = any(
                target not in members
                for name in component
                if name in conditional
                for target in conditional[name].routes.values()
            )
            ordered = tuple(name for name in self.nodes if name in members)
            cycles.append((ordered, exits))
        return cycles

    def __repr__(self) -> str:
        return (
            f"Graph(name='{self.name}', steps={list(self.nodes.keys())}, "
            f"entry='{self.entry_point}')"
        )
