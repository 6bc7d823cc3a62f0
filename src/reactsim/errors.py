"""Errors raised by the reactive graph and the simulation session.

Every error propagates synchronously to the caller of the operation that
triggered it (set_inputs, elapse, flush or a direct read).
"""

from __future__ import annotations

from typing import Iterable


class ReactiveError(Exception):
    """Base class for all reactsim errors."""


class CyclicDependency(ReactiveError):
    """A reactive expression depends on itself, directly or transitively.

    ``chain`` lists node labels from the first evaluation of the offending
    node to its re-entry, e.g. ``("calc:a", "calc:b", "calc:a")``.
    """

    def __init__(self, chain: Iterable[str]) -> None:
        self.chain = tuple(chain)
        super().__init__("cyclic dependency: " + " -> ".join(self.chain))


class UpstreamComputationFailed(ReactiveError):
    """A node read another node whose computation raised."""

    def __init__(self, original_error: BaseException, node_id: int, label: str) -> None:
        self.original_error = original_error
        self.node_id = node_id
        self.label = label
        super().__init__(
            f"{label} failed: {type(original_error).__name__}: {original_error}"
        )


class UnsetInputAccessed(ReactiveError, LookupError):
    """Domain logic required an input that no simulated UI has set yet."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name
        if name is None:
            super().__init__("required input has not been set")
        else:
            super().__init__(f"input {name!r} has not been set")


class SessionAlreadyTornDown(ReactiveError):
    """A session-bound accessor was used after the session closed."""

    def __init__(self, message: str = "simulation session has been torn down") -> None:
        super().__init__(message)


class UnknownBinding(ReactiveError, KeyError):
    """No output, calc or value is registered under this name."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"no {kind} named {name!r}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message.
        return self.args[0]


class FlushDidNotSettle(ReactiveError):
    """Sinks kept invalidating each other past the pass limit of one flush."""

    def __init__(self, passes: int, pending: Iterable[str]) -> None:
        self.passes = passes
        self.pending = tuple(pending)
        super().__init__(
            f"reactive graph did not settle after {passes} passes; "
            f"still dirty: {', '.join(self.pending)}"
        )
