"""Virtual clock: logical time for timer-driven reactives.

The clock starts at 0 and moves only when ``elapse`` is called; there is no
wall-clock coupling. Timer nodes compare their last fire against the clock.
An elapse that crosses several intervals of one timer fires it once: the
timer catches up to the current time instead of replaying missed ticks.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

from reactsim._anchor import NodeKind, ReactiveNode
from reactsim.scheduler import Scheduler

logger = logging.getLogger("reactsim.clock")

T = TypeVar("T")


class Timer(Generic[T]):
    """A sink invalidated every ``interval_ms`` of virtual time.

    Without a function its value is the number of times it has fired, so a
    calc can depend on it like any other node. With a function, the function
    runs on every fire and its result is the timer's value.
    """

    __slots__ = ("_scheduler", "_id")

    def __init__(
        self,
        clock: VirtualClock,
        interval_ms: float,
        fn: Callable[[], T] | None = None,
        *,
        label: str = "",
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"timer interval must be positive, got {interval_ms!r}")
        scheduler = clock.scheduler
        self._scheduler = scheduler
        name = getattr(fn, "__name__", "") if fn is not None else ""
        node = ReactiveNode(
            NodeKind.TIMER, None, label=label or (f"timer:{name}" if name else "")
        )
        node.compute_fn = fn if fn is not None else (lambda: node.ticks)
        node.interval_ms = interval_ms
        node.last_fired = clock.now
        self._id = scheduler.graph.register(node)
        scheduler.activate(self._id)
        scheduler.request_flush()

    @property
    def interval_ms(self) -> float:
        return self._scheduler.graph.node(self._id).interval_ms

    @property
    def ticks(self) -> int:
        """How many times the clock has fired this timer."""
        return self._scheduler.graph.node(self._id).ticks

    def get(self) -> T:
        return self._scheduler.graph.evaluate(self._id)

    __call__ = get

    def __repr__(self) -> str:
        graph = self._scheduler.graph
        if graph.disposed:
            return "Timer(<disposed>)"
        node = graph.node(self._id)
        return f"Timer({node.label}, every {node.interval_ms}ms, ticks={node.ticks})"


class VirtualClock:
    """Monotonic logical time, advanced only on explicit request."""

    def __init__(self, scheduler: Scheduler) -> None:
        self.scheduler = scheduler
        self._now: float = 0
        # node id -> due time, one-shot
        self._deadlines: dict[int, float] = {}

    @property
    def now(self) -> float:
        return self._now

    def timer(self, interval_ms: float, fn: Callable[[], T] | None = None) -> Timer[T]:
        return Timer(self, interval_ms, fn)

    def invalidate_later(self, delay_ms: float) -> None:
        """Invalidate the currently running computation after delay_ms.

        Only the latest request per node is kept.
        """
        if delay_ms < 0:
            raise ValueError(f"delay must not be negative, got {delay_ms!r}")
        node_id = self.scheduler.graph.current_node()
        if node_id is None:
            raise RuntimeError("invalidate_later() called outside a reactive computation")
        self._deadlines[node_id] = self._now + delay_ms

    def elapse(self, duration_ms: float) -> int:
        """Advance the clock and fire whatever came due, in one flush.

        Due timers and deadlines are processed in node registration order.
        Returns the number of nodes invalidated by the clock.
        """
        if duration_ms < 0:
            raise ValueError(f"cannot elapse a negative duration: {duration_ms!r}")
        graph = self.scheduler.graph
        graph._check_live()
        self._now += duration_ms

        due: list[int] = []
        for node in graph.nodes(NodeKind.TIMER):
            if self._now - node.last_fired >= node.interval_ms:
                node.last_fired = self._now
                node.ticks += 1
                due.append(node.id)
        for node_id, at in list(self._deadlines.items()):
            if at <= self._now:
                del self._deadlines[node_id]
                if node_id in graph:
                    due.append(node_id)
        due = sorted(set(due))

        logger.debug("Elapsed %sms to t=%s, %d due", duration_ms, self._now, len(due))
        with self.scheduler.batch():
            for node_id in due:
                graph.mark_dirty(node_id)
        return len(due)

    def __repr__(self) -> str:
        return f"VirtualClock(now={self._now})"
