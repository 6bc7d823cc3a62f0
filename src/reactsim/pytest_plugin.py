"""pytest integration for reactsim. Registered through the pytest11 entry point.

Provides the ``reactive_session`` fixture: a factory that opens simulation
sessions and closes every one of them at test teardown, pass or fail.
"""

from __future__ import annotations

import pytest

from reactsim.scheduler import DEFAULT_MAX_PASSES
from reactsim.session import SimulationSession


def pytest_addoption(parser):
    parser.addini(
        "reactsim_max_flush_passes",
        help="passes one flush may take before raising FlushDidNotSettle",
        default=str(DEFAULT_MAX_PASSES),
    )


@pytest.fixture
def reactive_session(request):
    """Open sessions with ``reactive_session(server, **args)``.

    Usage:
        def test_doubles(reactive_session):
            session = reactive_session(server, factor=2)
            session.set_inputs(n=3)
            assert session.output["result"] == "6"
    """
    max_passes = int(request.config.getini("reactsim_max_flush_passes"))
    sessions: list[SimulationSession] = []

    def factory(server, /, **args) -> SimulationSession:
        session = SimulationSession(server, args, max_flush_passes=max_passes)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()
