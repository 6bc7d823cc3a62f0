"""Reactive graph: dependency tracking and lazy evaluation.

Dependencies are discovered at runtime: while a node's compute function runs,
every other node it reads through ``evaluate`` is recorded as a dependency,
and the reader is recorded as a dependent of what it read. Edges are rebuilt
from scratch on every evaluation.

The evaluation stack lives on the graph instance, not in a global, so
independent graphs never see each other's readers.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from reactsim._anchor import Anchor, NodeKind, ReactiveNode
from reactsim.errors import (
    CyclicDependency,
    SessionAlreadyTornDown,
    UnsetInputAccessed,
    UpstreamComputationFailed,
)

logger = logging.getLogger("reactsim.graph")

T = TypeVar("T")

# Errors that already describe their origin and are never wrapped again.
_PASSTHROUGH = (CyclicDependency, UnsetInputAccessed, UpstreamComputationFailed)


class ReactiveGraph:
    """Holds reactive nodes and evaluates them on demand."""

    def __init__(self) -> None:
        self._anchor = Anchor()
        # Ids of nodes under evaluation; None marks an isolate() scope.
        self._stack: list[int | None] = []
        # Nodes invalidated while they were running.
        self._invalidated_while_running: set[int] = set()
        # Failures remembered for the duration of one flush pass.
        self._pass_failures: dict[int, Exception] | None = None
        # Nodes whose last computation raised and that were not invalidated since.
        self._failed: set[int] = set()
        # Callbacks waiting for the outermost computation to return.
        self._when_idle: list[Callable[[], object]] = []
        self._disposed = False
        self.recompute_count = 0

    # --- Registration ---

    def register(self, node: ReactiveNode) -> int:
        self._check_live()
        node.id = self._anchor.new_id()
        if not node.label:
            node.label = f"{node.kind.value}:{node.id}"
        self._anchor.nodes[node.id] = node
        return node.id

    def node(self, node_id: int) -> ReactiveNode:
        self._check_live()
        return self._anchor.nodes[node_id]

    def nodes(self, kind: NodeKind | None = None) -> list[ReactiveNode]:
        """Nodes in registration order, optionally filtered by kind."""
        self._check_live()
        return [
            n for n in self._anchor.nodes.values() if kind is None or n.kind is kind
        ]

    def remove(self, node_id: int) -> None:
        """Drop a node and every edge touching it."""
        node = self.node(node_id)
        self._unlink(node)
        for dependent in node.dependents:
            other = self._anchor.nodes.get(dependent)
            if other is not None:
                other.dependencies.discard(node_id)
        self._failed.discard(node_id)
        self._invalidated_while_running.discard(node_id)
        del self._anchor.nodes[node_id]

    # --- Evaluation ---

    def evaluate(self, node_id: int) -> object:
        """Read a node's value, recomputing it first if dirty.

        When called from inside another node's computation, the edge between
        the two is recorded.
        """
        node = self.node(node_id)
        if node_id in self._stack:
            start = self._stack.index(node_id)
            chain = [self._label(i) for i in self._stack[start:] if i is not None]
            raise CyclicDependency(chain + [node.label])

        caller = self._stack[-1] if self._stack else None
        # A reader removed mid-computation (a destroyed observer) records nothing.
        reader = self._anchor.nodes.get(caller) if caller is not None else None
        if reader is not None:
            reader.dependencies.add(node_id)
            node.dependents.add(caller)

        if node.dirty:
            try:
                self._recompute(node, caller)
            except Exception:
                if self.current_node() is None:
                    self._when_idle.clear()
                raise
            if self._when_idle and self.current_node() is None:
                self._run_when_idle()
        return node.cached_value

    def _recompute(self, node: ReactiveNode, caller: int | None) -> None:
        if node.kind is NodeKind.INPUT:
            node.dirty = False
            return

        if self._pass_failures is not None and node.id in self._pass_failures:
            self._raise(node, self._pass_failures[node.id], caller)

        self._unlink(node)
        self._invalidated_while_running.discard(node.id)
        self._stack.append(node.id)
        self.recompute_count += 1
        try:
            value = node.compute_fn()
        except Exception as exc:
            if self._pass_failures is not None:
                self._pass_failures[node.id] = exc
            self._failed.add(node.id)
            self._raise(node, exc, caller)
        finally:
            self._stack.pop()

        self._failed.discard(node.id)
        node.cached_value = value
        if node.id in self._invalidated_while_running:
            self._invalidated_while_running.discard(node.id)
        else:
            node.dirty = False

    def _raise(self, node: ReactiveNode, exc: Exception, caller: int | None) -> None:
        if caller is None or isinstance(exc, _PASSTHROUGH):
            raise exc
        raise UpstreamComputationFailed(exc, node.id, node.label) from exc

    def _unlink(self, node: ReactiveNode) -> None:
        """Discard the edges recorded by the node's previous evaluation."""
        for dep in node.dependencies:
            other = self._anchor.nodes.get(dep)
            if other is not None:
                other.dependents.discard(node.id)
        node.dependencies.clear()

    def isolate(self, fn: Callable[[], T]) -> T:
        """Run fn without recording anything it reads as a dependency."""
        self._check_live()
        self._stack.append(None)
        try:
            return fn()
        finally:
            self._stack.pop()

    def current_node(self) -> int | None:
        """Id of the node whose computation is running, if any."""
        for node_id in reversed(self._stack):
            if node_id is not None:
                return node_id
        return None

    def when_idle(self, callback: Callable[[], object]) -> None:
        """Call back once no computation is running.

        Runs immediately when the graph is idle. Otherwise the callback waits
        for the outermost computation to return; it is dropped if that
        computation raises. Repeated requests for the same callback coalesce.
        """
        self._check_live()
        if self.current_node() is None:
            callback()
        elif callback not in self._when_idle:
            self._when_idle.append(callback)

    def _run_when_idle(self) -> None:
        callbacks, self._when_idle = self._when_idle, []
        for callback in callbacks:
            callback()

    # --- Invalidation ---

    def mark_dirty(self, node_id: int) -> set[int]:
        """Mark a node and everything downstream of it dirty.

        Does not recompute anything. Returns the ids that were visited.
        """
        self._check_live()
        seen: set[int] = set()
        pending = [node_id]
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            node = self._anchor.nodes[current]
            node.dirty = True
            self._failed.discard(current)
            if current in self._stack:
                self._invalidated_while_running.add(current)
            pending.extend(sorted(node.dependents, reverse=True))
        return seen

    def write(self, node_id: int, value: object, *, force: bool = False) -> bool:
        """Store a value on an input node and invalidate its dependents.

        Without force, writing an equal value is a no-op. Returns whether
        anything was invalidated.
        """
        node = self.node(node_id)
        if node.kind is not NodeKind.INPUT:
            raise TypeError(f"{node.label} is not writable")
        old = node.cached_value
        if not force and (old is value or old == value):
            return False
        node.cached_value = value
        self.mark_dirty(node_id)
        return True

    # --- Flush support ---

    def failed(self, node_id: int) -> bool:
        """Whether the node's last computation raised and nothing changed since."""
        return node_id in self._failed

    @contextmanager
    def pass_scope(self) -> Iterator[None]:
        """Remember failures so a failing node computes at most once per pass."""
        self._pass_failures = {}
        try:
            yield
        finally:
            self._pass_failures = None

    # --- Lifecycle ---

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Release every node. The graph is unusable afterwards."""
        if self._disposed:
            return
        count = len(self._anchor.nodes)
        self._anchor.clear()
        self._stack.clear()
        self._invalidated_while_running.clear()
        self._failed.clear()
        self._when_idle.clear()
        self._disposed = True
        logger.debug("Disposed graph with %d nodes", count)

    def _check_live(self) -> None:
        if self._disposed:
            raise SessionAlreadyTornDown()

    def _label(self, node_id: int) -> str:
        node = self._anchor.nodes.get(node_id)
        return node.label if node is not None else f"<{node_id}>"

    def __len__(self) -> int:
        return len(self._anchor.nodes)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._anchor.nodes

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"{len(self._anchor.nodes)} nodes"
        return f"ReactiveGraph({state})"
