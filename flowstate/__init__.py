"""
FlowState - A small, async-first declarative workflow graph engine.

Compose steps into a graph, merge their partial updates into a shared state
through per-field reducers, and route between them with pure functions.
"""

__version__ = "1.0.0"
