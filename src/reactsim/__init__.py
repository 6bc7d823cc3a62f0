"""reactsim: simulate reactive server programs in-process, for tests."""

from importlib.metadata import version as _version

__version__ = _version("reactsim")

from reactsim._anchor import NodeKind, ReactiveNode
from reactsim.errors import (
    ReactiveError,
    CyclicDependency,
    UpstreamComputationFailed,
    UnsetInputAccessed,
    SessionAlreadyTornDown,
    UnknownBinding,
    FlushDidNotSettle,
)
from reactsim.graph import ReactiveGraph
from reactsim.scheduler import Scheduler
from reactsim.inputs import UNSET, InputProxy, req
from reactsim.value import Value
from reactsim.calc import Calc, calc
from reactsim.observer import Output, Observer
from reactsim.clock import VirtualClock, Timer
from reactsim.session import SimulationSession, ServerContext, start, simulate
# pytest_plugin NOT imported here: loaded by pytest through its entry point

__all__ = [
    "NodeKind",
    "ReactiveNode",
    "ReactiveError",
    "CyclicDependency",
    "UpstreamComputationFailed",
    "UnsetInputAccessed",
    "SessionAlreadyTornDown",
    "UnknownBinding",
    "FlushDidNotSettle",
    "ReactiveGraph",
    "Scheduler",
    "UNSET",
    "InputProxy",
    "req",
    "Value",
    "Calc",
    "calc",
    "Output",
    "Observer",
    "VirtualClock",
    "Timer",
    "SimulationSession",
    "ServerContext",
    "start",
    "simulate",
]
