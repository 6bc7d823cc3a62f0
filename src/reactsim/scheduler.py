"""Invalidation scheduler: flushes dirty sinks in one synchronous tick.

Sinks (outputs, observers, timers) are the only nodes the scheduler pulls on.
Everything else is recomputed because a sink read it, which keeps derived
nodes lazy and makes evaluation order follow the dependency graph.

Batching: writes inside ``batch()`` accumulate invalidations and flush them
once when the outermost scope exits, so sinks never see half-applied input.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from reactsim.errors import FlushDidNotSettle, UnsetInputAccessed
from reactsim.graph import ReactiveGraph

logger = logging.getLogger("reactsim.scheduler")

DEFAULT_MAX_PASSES = 100


class Scheduler:
    """Single-threaded, cooperative flush loop over one graph."""

    def __init__(self, graph: ReactiveGraph, *, max_passes: int = DEFAULT_MAX_PASSES) -> None:
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        self.graph = graph
        self.max_passes = max_passes
        # Insertion-ordered set of active sink ids.
        self._active: dict[int, None] = {}
        self._batch_depth = 0
        self._flushing = False
        self.flush_count = 0

    # --- Sinks ---

    def activate(self, node_id: int) -> None:
        self._active.setdefault(node_id, None)

    def deactivate(self, node_id: int) -> None:
        self._active.pop(node_id, None)

    def is_active(self, node_id: int) -> bool:
        return node_id in self._active

    def pending(self) -> list[int]:
        """Active sinks that are dirty, in activation order.

        A sink that failed is not retried until something invalidates it again.
        """
        return [
            nid
            for nid in self._active
            if self.graph.node(nid).dirty and not self.graph.failed(nid)
        ]

    # --- Batching ---

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self._batch_depth += 1

    def end_batch(self) -> None:
        """Exit a batching scope. The outermost exit flushes."""
        self._batch_depth -= 1
        if self._batch_depth == 0:
            self.graph.when_idle(self.flush)

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Context manager for batching writes.

        Usage:
            with scheduler.batch():
                graph.write(a, 1)
                graph.write(b, 2)
                # sinks recompute here, once, after both writes
        """
        self.begin_batch()
        try:
            yield
        finally:
            self.end_batch()

    @property
    def batching(self) -> bool:
        return self._batch_depth > 0

    def request_flush(self) -> None:
        """Flush now, unless a batch or a flush in progress will cover it.

        A request made while a node is being read outside any flush waits for
        that read to return, so the flush never runs inside a computation.
        """
        if self._batch_depth == 0 and not self._flushing:
            self.graph.when_idle(self.flush)

    # --- Flush ---

    def flush(self) -> int:
        """Recompute every dirty active sink. Returns the recomputation count.

        A failing sink does not stop the others in the same pass; the first
        failure is raised once the pass completes. Calling flush with nothing
        dirty does no work.
        """
        self.graph._check_live()
        if self._flushing:
            return 0

        self._flushing = True
        before = self.graph.recompute_count
        passes = 0
        try:
            while True:
                pending = self.pending()
                if not pending:
                    break
                if passes == self.max_passes:
                    raise FlushDidNotSettle(
                        passes, [self.graph.node(nid).label for nid in pending]
                    )
                passes += 1
                self._run_pass(pending)
        finally:
            self._flushing = False

        recomputed = self.graph.recompute_count - before
        if passes:
            self.flush_count += 1
            logger.debug("Flushed %d passes, %d recomputations", passes, recomputed)
        return recomputed

    def _run_pass(self, pending: list[int]) -> None:
        errors: list[Exception] = []
        with self.graph.pass_scope():
            for node_id in pending:
                # An earlier sink in this pass may have cleaned or destroyed it.
                if node_id not in self.graph or not self.graph.node(node_id).dirty:
                    continue
                label = self.graph.node(node_id).label
                try:
                    self.graph.evaluate(node_id)
                except UnsetInputAccessed as exc:
                    # req() halts the sink until one of its inputs changes.
                    logger.debug("%s is waiting for input: %s", label, exc)
                except Exception as exc:
                    errors.append(exc)
        if errors:
            raise errors[0]
