"""Simulation sessions: run a reactive server without a browser.

A session builds a private graph from a server definition, then lets test
code set inputs, advance virtual time and read outputs synchronously:

    def server(input, output, session):
        @session.calc
        def doubled():
            return req(input.n()) * 2

        @output.text
        def label():
            return f"n*2 = {doubled()}"

    def body(session):
        session.set_inputs(n=4)
        assert session.get("doubled") == 8
        assert session.output["label"] == "n*2 = 8"

    start(server, {}, body)

The server is called once, in capture mode: its declarations register nodes
and nothing runs until the capture batch flushes. The session owns every
node it creates and releases them all when it closes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Mapping, TypeVar

from reactsim.calc import Calc
from reactsim.clock import Timer, VirtualClock
from reactsim.errors import SessionAlreadyTornDown, UnknownBinding
from reactsim.graph import ReactiveGraph
from reactsim.inputs import UNSET, InputProxy
from reactsim.observer import Observer, Output
from reactsim.scheduler import DEFAULT_MAX_PASSES, Scheduler
from reactsim.value import Value

logger = logging.getLogger("reactsim.session")

T = TypeVar("T")

ServerFn = Callable[..., Any]

# Handles that session.get_returned() reads through the graph.
_REACTIVE_HANDLES = (Calc, Value, Timer, Output)


def _render_text(value: object) -> str:
    return "" if value is None else str(value)


class OutputBinder:
    """The ``output`` argument handed to a server definition.

    Usage:
        @output
        def table():
            return rows()

        @output.text
        def title():
            return f"{len(rows())} rows"
    """

    __slots__ = ("_session",)

    def __init__(self, session: SimulationSession) -> None:
        self._session = session

    def __call__(
        self,
        fn: Callable[[], object] | None = None,
        *,
        name: str | None = None,
        render: Callable[[object], object] | None = None,
    ):
        def decorator(fn: Callable[[], object]) -> Output:
            return self._session._bind_output(name or fn.__name__, fn, render)

        if fn is None:
            return decorator
        return decorator(fn)

    def text(self, fn: Callable[[], object] | None = None, *, name: str | None = None):
        """Bind an output rendered as text; None renders as an empty string."""
        return self(fn, name=name, render=_render_text)


class ServerContext:
    """The ``session`` argument handed to a server definition.

    Every declaration is bound to this session's graph; there is no ambient
    current session.
    """

    __slots__ = ("_session",)

    def __init__(self, session: SimulationSession) -> None:
        self._session = session

    def calc(self, fn: Callable[[], T] | None = None, *, name: str | None = None):
        """Declare a lazily evaluated derived value, readable as session.get(name)."""

        def decorator(fn: Callable[[], T]) -> Calc[T]:
            label = name or fn.__name__
            handle = Calc(self._session.graph, fn, label=f"calc:{label}")
            self._session._named[label] = handle
            return handle

        if fn is None:
            return decorator
        return decorator(fn)

    def value(self, initial: T = UNSET, *, name: str | None = None) -> Value[T]:
        """Declare a settable reactive value, optionally readable as session.get(name)."""
        handle = Value(
            self._session.scheduler, initial, label=f"value:{name}" if name else ""
        )
        if name:
            self._session._named[name] = handle
        return handle

    def effect(self, fn: Callable[[], None] | None = None):
        """Declare an observer, run on every flush that finds it invalidated."""

        def decorator(fn: Callable[[], None]) -> Observer:
            return Observer(self._session.scheduler, fn)

        if fn is None:
            return decorator
        return decorator(fn)

    def timer(self, interval_ms: float, fn: Callable[[], T] | None = None) -> Timer[T]:
        """Declare a timer fired by the virtual clock every interval_ms."""
        return self._session._clock.timer(interval_ms, fn)

    def invalidate_later(self, delay_ms: float) -> None:
        """Re-run the current computation once delay_ms of virtual time passes."""
        self._session._clock.invalidate_later(delay_ms)

    def isolate(self, fn: Callable[[], T]) -> T:
        """Read reactive values without taking a dependency on them."""
        return self._session.graph.isolate(fn)

    @property
    def now(self) -> float:
        return self._session._clock.now


class OutputView(Mapping[str, object]):
    """Read-only view of a session's outputs, as in ``session.output["x"]``."""

    __slots__ = ("_session",)

    def __init__(self, session: SimulationSession) -> None:
        self._session = session

    def __getitem__(self, name: str) -> object:
        return self._session.get_output(name)

    def __contains__(self, name: object) -> bool:
        self._session._check_live()
        return name in self._session._outputs

    def __iter__(self) -> Iterator[str]:
        self._session._check_live()
        return iter(list(self._session._outputs))

    def __len__(self) -> int:
        self._session._check_live()
        return len(self._session._outputs)


class SimulationSession:
    """One isolated run of a server definition.

    Usable as a context manager; leaving the block tears the session down
    whether the block returned or raised.
    """

    def __init__(
        self,
        server: ServerFn,
        args: Mapping[str, object] | None = None,
        *,
        max_flush_passes: int = DEFAULT_MAX_PASSES,
    ) -> None:
        self.server = server
        self.args = dict(args or {})
        self.graph = ReactiveGraph()
        self.scheduler = Scheduler(self.graph, max_passes=max_flush_passes)
        self._input = InputProxy(self.scheduler)
        self._clock = VirtualClock(self.scheduler)
        self._outputs: dict[str, Output] = {}
        self._named: dict[str, Calc | Value] = {}
        self._closed = False
        self._returned: object = None

        name = getattr(server, "__name__", repr(server))
        try:
            with self.scheduler.batch():
                self._returned = server(
                    self._input, OutputBinder(self), ServerContext(self), **self.args
                )
        except BaseException:
            self.close()
            raise
        logger.info(
            "Started session for %s: %d nodes, %d outputs",
            name, len(self.graph), len(self._outputs),
        )

    # --- Capture ---

    def _bind_output(
        self,
        name: str,
        fn: Callable[[], object],
        render: Callable[[object], object] | None,
    ) -> Output:
        if name in self._outputs:
            raise ValueError(f"output {name!r} is already bound")
        handle = Output(self.scheduler, name, fn, render=render)
        self._outputs[name] = handle
        return handle

    # --- Driving the simulation ---

    @property
    def input(self) -> InputProxy:
        self._check_live()
        return self._input

    @property
    def clock(self) -> VirtualClock:
        self._check_live()
        return self._clock

    @property
    def now(self) -> float:
        return self.clock.now

    def set_inputs(self, values: Mapping[str, object] | None = None, **kwargs: object) -> None:
        """Set simulated inputs and flush once for all of them."""
        self._check_live()
        self._input.set_inputs(values, **kwargs)

    def elapse(self, duration_ms: float) -> int:
        """Advance virtual time and flush whatever timers came due."""
        self._check_live()
        return self._clock.elapse(duration_ms)

    def set_value(self, name: str, value: object) -> bool:
        """Set a named server value. Flushes if the value changed."""
        self._check_live()
        handle = self._named.get(name)
        if not isinstance(handle, Value):
            raise UnknownBinding("value", name)
        return handle.set(value)

    def flush(self) -> int:
        self._check_live()
        return self.scheduler.flush()

    # --- Reading results ---

    @property
    def output(self) -> OutputView:
        self._check_live()
        return OutputView(self)

    def get_output(self, name: str) -> object:
        self._check_live()
        handle = self._outputs.get(name)
        if handle is None:
            raise UnknownBinding("output", name)
        return handle.get()

    def get(self, name: str) -> object:
        """Current value of a calc or named value declared by the server."""
        self._check_live()
        handle = self._named.get(name)
        if handle is None:
            raise UnknownBinding("calc or value", name)
        return handle.get()

    @property
    def returned(self) -> object:
        """Whatever the server definition returned, unread."""
        self._check_live()
        return self._returned

    def get_returned(self) -> object:
        """The server's return value, read through the graph if it is reactive."""
        returned = self.returned
        if isinstance(returned, _REACTIVE_HANDLES):
            return returned.get()
        return returned

    def snapshot(self) -> dict[str, object]:
        """Plain values of every bound output, in binding order."""
        self._check_live()
        return {name: handle.get() for name, handle in self._outputs.items()}

    # --- Lifecycle ---

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the graph and everything bound to it. Idempotent."""
        if self._closed:
            return
        self._closed = True
        count = len(self.graph)
        self.graph.dispose()
        self._outputs.clear()
        self._named.clear()
        self._returned = None
        logger.info("Tore down session: released %d nodes", count)

    def _check_live(self) -> None:
        if self._closed:
            raise SessionAlreadyTornDown()

    def __enter__(self) -> SimulationSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        name = getattr(self.server, "__name__", repr(self.server))
        if self._closed:
            return f"SimulationSession({name}, closed)"
        return (
            f"SimulationSession({name}, t={self._clock.now}, "
            f"{len(self.graph)} nodes, outputs={list(self._outputs)})"
        )


def start(
    server: ServerFn,
    args: Mapping[str, object] | None,
    body: Callable[[SimulationSession], T],
    *,
    max_flush_passes: int = DEFAULT_MAX_PASSES,
) -> T:
    """Run body against a fresh session of server, then tear it down.

    Any exception raised by body, including a failed assertion, propagates
    after teardown. Returns whatever body returns.
    """
    with SimulationSession(server, args, max_flush_passes=max_flush_passes) as session:
        return body(session)


def simulate(server: ServerFn, /, **args: object) -> SimulationSession:
    """Open a session for use in a ``with`` block.

    Usage:
        with simulate(server, multiplier=3) as session:
            session.set_inputs(x=2)
            assert session.output["result"] == "6"
    """
    return SimulationSession(server, args)
