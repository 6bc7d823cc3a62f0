"""Outputs and observers: the sinks a flush pulls on.

Unlike a Calc (lazy, evaluated on read), a sink is recomputed by every flush
that finds it dirty.

Two flavors:
- Output(name, fn): a rendered value bound to an output name. It joins the
  flush once something reads it, the way a real page only renders outputs it
  displays.
- Observer(fn): a side effect, active from creation and run by the next flush.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from reactsim._anchor import EMPTY, NodeKind, ReactiveNode
from reactsim.scheduler import Scheduler

T = TypeVar("T")


class Output(Generic[T]):
    """A named render sink."""

    __slots__ = ("_scheduler", "_id", "name")

    def __init__(
        self,
        scheduler: Scheduler,
        name: str,
        fn: Callable[[], object],
        *,
        render: Callable[[object], T] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self.name = name
        compute = fn if render is None else (lambda: render(fn()))
        node = ReactiveNode(NodeKind.OUTPUT, compute, label=f"output:{name}")
        self._id = scheduler.graph.register(node)

    @property
    def active(self) -> bool:
        return self._scheduler.is_active(self._id)

    def get(self) -> T:
        """Current rendered value. The first read activates the output."""
        self._scheduler.activate(self._id)
        return self._scheduler.graph.evaluate(self._id)

    __call__ = get

    def __repr__(self) -> str:
        graph = self._scheduler.graph
        if graph.disposed:
            return f"Output({self.name!r}, disposed)"
        node = graph.node(self._id)
        if node.cached_value is EMPTY:
            state = "unrendered"
        else:
            state = f"{'stale' if node.dirty else 'rendered'}={node.cached_value!r}"
        return f"Output({self.name!r}, {state})"


class Observer:
    """A reactive side effect that re-runs when its dependencies change."""

    __slots__ = ("_scheduler", "_id", "_destroyed")

    def __init__(self, scheduler: Scheduler, fn: Callable[[], None], *, label: str = "") -> None:
        self._scheduler = scheduler
        name = getattr(fn, "__name__", "")
        node = ReactiveNode(
            NodeKind.OUTPUT, fn, label=label or (f"observer:{name}" if name else "")
        )
        self._id = scheduler.graph.register(node)
        self._destroyed = False
        scheduler.activate(self._id)
        scheduler.request_flush()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Stop this observer. Disconnects it from all dependencies."""
        if self._destroyed:
            return
        self._destroyed = True
        self._scheduler.deactivate(self._id)
        self._scheduler.graph.remove(self._id)

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "active"
        return f"Observer({state})"
