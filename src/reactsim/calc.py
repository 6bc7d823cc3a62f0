"""Calcs: derived values with automatic dependency tracking.

A Calc wraps a function. When evaluated, it records which nodes the function
reads and caches the result. When any dependency changes, the cache is
invalidated; the next read recomputes.

Calcs are lazy: one that nothing reads is never evaluated, no matter how
often its inputs change.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from reactsim._anchor import EMPTY, NodeKind, ReactiveNode
from reactsim.graph import ReactiveGraph

T = TypeVar("T")


class Calc(Generic[T]):
    """A derived value that tracks its dependencies and caches the result."""

    __slots__ = ("_graph", "_id")

    def __init__(self, graph: ReactiveGraph, fn: Callable[[], T], *, label: str = "") -> None:
        self._graph = graph
        name = getattr(fn, "__name__", "")
        node = ReactiveNode(
            NodeKind.DERIVED, fn, label=label or (f"calc:{name}" if name else "")
        )
        self._id = graph.register(node)

    @property
    def node_id(self) -> int:
        return self._id

    def get(self) -> T:
        """Read the value. Recomputes first if dirty."""
        return self._graph.evaluate(self._id)

    __call__ = get

    def __repr__(self) -> str:
        if self._graph.disposed:
            return "Calc(<disposed>)"
        node = self._graph.node(self._id)
        if node.dirty:
            state = "dirty" if node.cached_value is not EMPTY else "unevaluated"
        else:
            state = f"cached={node.cached_value!r}"
        return f"Calc({node.label}, {state})"


def calc(graph: ReactiveGraph) -> Callable[[Callable[[], T]], Calc[T]]:
    """Decorator factory binding calcs to an explicit graph.

    Usage:
        graph = ReactiveGraph()
        n = Value(scheduler, 3)

        @calc(graph)
        def doubled():
            return n() * 2

        doubled()  # 6
    """

    def decorator(fn: Callable[[], T]) -> Calc[T]:
        return Calc(graph, fn)

    return decorator
