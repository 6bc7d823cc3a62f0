"""Node arena: plain structures that hold all reactive state for one graph.

Nodes live in an id-keyed dict. Dependency and dependent links are sets of
ids, never object references, so tearing a graph down is just clearing the
arena. Each graph owns its own Anchor and id counter: ids are stable within
one session and nothing is shared between sessions.
"""

from __future__ import annotations

import enum
import itertools
from typing import Callable


class NodeKind(enum.Enum):
    INPUT = "input"
    DERIVED = "derived"
    OUTPUT = "output"
    TIMER = "timer"


# Cache slot of a node that has never been computed.
EMPTY = object()


class ReactiveNode:
    """A unit of computed or sink state."""

    __slots__ = (
        "id",
        "kind",
        "label",
        "compute_fn",
        "cached_value",
        "dependencies",
        "dependents",
        "dirty",
        "interval_ms",
        "last_fired",
        "ticks",
    )

    def __init__(
        self,
        kind: NodeKind,
        compute_fn: Callable[[], object] | None = None,
        *,
        label: str = "",
        value: object = EMPTY,
    ) -> None:
        self.id: int | None = None
        self.kind = kind
        self.label = label
        self.compute_fn = compute_fn
        self.cached_value = value
        self.dependencies: set[int] = set()
        self.dependents: set[int] = set()
        # Inputs hold their value directly; everything else starts uncomputed.
        self.dirty = kind is not NodeKind.INPUT
        # Timer bookkeeping, unused by other kinds.
        self.interval_ms: float | None = None
        self.last_fired: float = 0
        self.ticks = 0

    def __repr__(self) -> str:
        state = "dirty" if self.dirty else f"cached={self.cached_value!r}"
        return f"ReactiveNode({self.id}, {self.kind.value}, {self.label!r}, {state})"


class Anchor:
    """Arena of nodes for a single graph."""

    def __init__(self) -> None:
        self.nodes: dict[int, ReactiveNode] = {}
        self._id_counter = itertools.count(1)

    def new_id(self) -> int:
        return next(self._id_counter)

    def clear(self) -> None:
        for node in self.nodes.values():
            node.dependencies.clear()
            node.dependents.clear()
            node.compute_fn = None
            node.cached_value = EMPTY
        self.nodes.clear()
