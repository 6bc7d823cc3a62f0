"""Simulated user input: a settable key-value store of Input nodes.

Every input starts as ``UNSET``: no UI has supplied a value yet. This is
distinct from any domain default, so tests can tell "never touched" from
"explicitly set to an empty value".

Reads inside a calc, output or observer register the dependency. Writes go
through ``set_inputs``, which batches all changes into a single flush.
"""

from __future__ import annotations

from typing import Iterator, Mapping

from reactsim._anchor import NodeKind, ReactiveNode
from reactsim.errors import UnsetInputAccessed
from reactsim.scheduler import Scheduler


class _Unset:
    """Marker for an input no simulated UI has written."""

    __slots__ = ()
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"

    def __reduce__(self) -> str:
        return "UNSET"


UNSET = _Unset()


def req(*values: object) -> object:
    """Raise UnsetInputAccessed unless every value has been set.

    Returns the first value so it can wrap a read inline:

        @session.calc
        def doubled():
            return req(input.n()) * 2
    """
    for value in values:
        if value is UNSET:
            raise UnsetInputAccessed()
    return values[0] if values else None


class InputAccessor:
    """Callable handle for one named input, as in ``input.x()``."""

    __slots__ = ("_proxy", "_name")

    def __init__(self, proxy: InputProxy, name: str) -> None:
        self._proxy = proxy
        self._name = name

    def __call__(self) -> object:
        return self._proxy.get(self._name)

    def require(self) -> object:
        return self._proxy.require(self._name)

    def is_set(self) -> bool:
        return self._proxy.is_set(self._name)

    def __repr__(self) -> str:
        return f"InputAccessor({self._name!r})"


class InputProxy:
    """Named Input nodes standing in for real user input.

    ``input.x()`` reads input ``x``. Attribute access resolves the proxy's
    own methods first, so inputs named get, require, is_set, names or
    set_inputs are read by item instead: ``input["get"]()``.
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._nodes: dict[str, int] = {}

    def _node_id(self, name: str) -> int:
        node_id = self._nodes.get(name)
        if node_id is None:
            node = ReactiveNode(NodeKind.INPUT, label=f"input:{name}", value=UNSET)
            node_id = self._scheduler.graph.register(node)
            self._nodes[name] = node_id
        return node_id

    # --- Read operations (track) ---

    def get(self, name: str) -> object:
        """Current value of the input, or UNSET. Registers the dependency."""
        return self._scheduler.graph.evaluate(self._node_id(name))

    def require(self, name: str) -> object:
        """Like get(), but raises UnsetInputAccessed for an unset input."""
        value = self.get(name)
        if value is UNSET:
            raise UnsetInputAccessed(name)
        return value

    def __getattr__(self, name: str) -> InputAccessor:
        if name.startswith("_"):
            raise AttributeError(name)
        return InputAccessor(self, name)

    def __getitem__(self, name: str) -> InputAccessor:
        return InputAccessor(self, name)

    # --- Introspection (no tracking) ---

    def is_set(self, name: str) -> bool:
        node_id = self._nodes.get(name)
        if node_id is None:
            return False
        return self._scheduler.graph.node(node_id).cached_value is not UNSET

    def names(self) -> list[str]:
        """Names of inputs that have been set, in first-write order."""
        return [name for name in self._nodes if self.is_set(name)]

    def __contains__(self, name: str) -> bool:
        return self.is_set(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    # --- Write operations ---

    def set_inputs(self, values: Mapping[str, object] | None = None, **kwargs: object) -> None:
        """Write every name/value pair, then flush once.

        Each written input is invalidated even when the value is unchanged.
        Sinks see all of the writes together, never a subset.
        """
        items = dict(values or {})
        items.update(kwargs)
        graph = self._scheduler.graph
        with self._scheduler.batch():
            for name, value in items.items():
                graph.write(self._node_id(name), value, force=True)

    def __repr__(self) -> str:
        graph = self._scheduler.graph
        if graph.disposed:
            return "InputProxy(disposed)"
        values = {
            name: graph.node(nid).cached_value for name, nid in self._nodes.items()
        }
        return f"InputProxy({values!r})"
