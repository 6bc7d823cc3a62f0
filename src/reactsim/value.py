"""Reactive values: server-side state that tracks its readers.

A Value is an Input node the server itself owns. Reading it inside a calc,
output or observer registers the dependency; setting it invalidates every
dependent and flushes, unless a batch or a running flush will cover it.

Instances are thin handles holding a graph and a node id.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from reactsim._anchor import NodeKind, ReactiveNode
from reactsim.inputs import UNSET
from reactsim.scheduler import Scheduler

T = TypeVar("T")


class Value(Generic[T]):
    """A single settable value with automatic dependency tracking."""

    __slots__ = ("_scheduler", "_id")

    def __init__(self, scheduler: Scheduler, value: T = UNSET, *, label: str = "") -> None:
        self._scheduler = scheduler
        node = ReactiveNode(NodeKind.INPUT, label=label, value=value)
        self._id = scheduler.graph.register(node)

    def get(self) -> T:
        """Read the value. If inside a computation, registers the dependency."""
        return self._scheduler.graph.evaluate(self._id)

    __call__ = get

    def set(self, value: T) -> bool:
        """Write a new value. Equal values are ignored.

        Returns whether dependents were invalidated.
        """
        changed = self._scheduler.graph.write(self._id, value)
        if changed:
            self._scheduler.request_flush()
        return changed

    def is_set(self) -> bool:
        return self._scheduler.graph.node(self._id).cached_value is not UNSET

    def __repr__(self) -> str:
        graph = self._scheduler.graph
        if graph.disposed:
            return "Value(<disposed>)"
        return f"Value({graph.node(self._id).cached_value!r})"
