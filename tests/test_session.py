"""Tests for simulation sessions: server capture, driving inputs, teardown."""

import logging

import pytest

from reactsim import (
    UNSET,
    Calc,
    CyclicDependency,
    SessionAlreadyTornDown,
    SimulationSession,
    UnknownBinding,
    UnsetInputAccessed,
    UpstreamComputationFailed,
    req,
    simulate,
    start,
)


def arithmetic_server(input, output, session):
    @session.calc
    def xy():
        return input.x() - input.y()

    @session.calc
    def yz():
        return input.z() + input.y()

    @session.calc
    def xyz():
        return xy() * yz()

    @output.text
    def out():
        return f"Result: {xyz()}"


def summary_server(input, output, session, var, counts):
    @session.calc
    def range_val():
        counts.append(1)
        return [min(var()), max(var())]

    return range_val


def summary_harness(input, output, session, counts):
    var = session.value(name="var")
    return summary_server(input, output, session, var=var, counts=counts)


class TestWorkedScenarios:
    def test_arithmetic(self):
        def body(session):
            session.set_inputs(x=1, y=1, z=1)
            assert session.get("xy") == 0
            assert session.get("yz") == 2
            assert session.get("xyz") == 0
            assert session.output["out"] == "Result: 0"

        start(arithmetic_server, None, body)

    def test_arithmetic_follows_inputs(self):
        with simulate(arithmetic_server) as session:
            session.set_inputs(x=1, y=1, z=1)
            assert session.output["out"] == "Result: 0"
            session.set_inputs(x=5)
            assert session.get("xy") == 4
            assert session.output["out"] == "Result: 8"

    def test_reactively_supplied_sequence(self):
        counts = []
        with simulate(summary_harness, counts=counts) as session:
            session.set_value("var", list(range(1, 11)))
            assert session.get_returned() == [1, 10]
            assert len(counts) == 1

            session.set_value("var", list(range(10, 21)))
            assert session.get_returned() == [10, 20]
            assert session.get("range_val") == [10, 20]
            assert len(counts) == 2


class TestTestableProperties:
    def test_batching(self):
        counts = []

        def server(input, output, session):
            @session.calc
            def total():
                counts.append(1)
                return input.a() + input.b()

            @output
            def shown():
                return total()

        with simulate(server) as session:
            session.set_inputs(a=0, b=0)
            assert session.output["shown"] == 0
            flushes = session.scheduler.flush_count

            session.set_inputs({"a": 1, "b": 2})
            assert session.scheduler.flush_count == flushes + 1
            assert len(counts) == 2
            assert session.output["shown"] == 3

    def test_laziness(self):
        counts = []

        def server(input, output, session):
            @session.calc
            def unused():
                counts.append(1)
                return input.a()

            @output
            def used():
                return input.a()

        with simulate(server) as session:
            session.set_inputs(a=1)
            assert session.output["used"] == 1
            session.set_inputs(a=2)
            session.elapse(1000)
            assert counts == []

    def test_clean_read_idempotence(self):
        counts = []

        def server(input, output, session):
            @session.calc
            def doubled():
                counts.append(1)
                return input.n() * 2

        with simulate(server) as session:
            session.set_inputs(n=4)
            assert session.get("doubled") == 8
            assert session.get("doubled") == 8
            assert len(counts) == 1

    def test_cycle_detection(self):
        def server(input, output, session):
            @session.calc
            def a():
                return b() + 1

            @session.calc
            def b():
                return a() + 1

        with simulate(server) as session:
            with pytest.raises(CyclicDependency) as info:
                session.get("a")
            assert info.value.chain == ("calc:a", "calc:b", "calc:a")
            with pytest.raises(CyclicDependency):
                session.get("b")

    def test_unset_distinct_from_empty(self):
        def server(input, output, session):
            @output.text
            def status():
                name = input.name()
                return "untouched" if name is UNSET else f"name={name!r}"

        with simulate(server) as session:
            assert session.output["status"] == "untouched"
            session.set_inputs(name="")
            assert session.output["status"] == "name=''"

    def test_timer_collapse(self):
        def server(input, output, session):
            counter = session.value(0, name="counter")
            session.timer(100, lambda: counter.set(session.isolate(counter) + 1))

        with simulate(server) as session:
            before = session.get("counter")
            session.elapse(250)
            assert session.get("counter") == before + 1

    def test_determinism(self):
        def run():
            with simulate(arithmetic_server) as session:
                results = []
                for values in ({"x": 1, "y": 2, "z": 3}, {"y": 5}, {"x": -4, "z": 0}):
                    session.set_inputs(values)
                    results.append(session.snapshot())
                return results, [n.id for n in session.graph.nodes()]

        assert run() == run()


class TestErrors:
    def test_required_input_not_set(self):
        def server(input, output, session):
            @session.calc
            def doubled():
                return req(input.n()) * 2

            @output.text
            def label():
                return doubled()

        with simulate(server) as session:
            with pytest.raises(UnsetInputAccessed):
                session.output["label"]
            session.set_inputs(n=0)
            assert session.output["label"] == "0"

    def test_upstream_failure_surfaces_from_set_inputs(self):
        def server(input, output, session):
            @session.calc
            def ratio():
                return 1 / input.d()

            @output.text
            def shown():
                return ratio()

        with simulate(server) as session:
            session.set_inputs(d=4)
            assert session.output["shown"] == "0.25"

            with pytest.raises(UpstreamComputationFailed) as info:
                session.set_inputs(d=0)
            assert isinstance(info.value.original_error, ZeroDivisionError)
            assert info.value.label == "calc:ratio"

            session.set_inputs(d=2)
            assert session.output["shown"] == "0.5"

    def test_failing_branch_leaves_others_updated(self):
        def server(input, output, session):
            @output
            def broken():
                return 1 / input.d()

            @output
            def fine():
                return input.d() + 1

        with simulate(server) as session:
            session.set_inputs(d=1)
            assert session.snapshot() == {"broken": 1.0, "fine": 2}
            with pytest.raises(ZeroDivisionError):
                session.set_inputs(d=0)
            assert session.output["fine"] == 1

    def test_unknown_names(self):
        with simulate(arithmetic_server) as session:
            with pytest.raises(UnknownBinding, match="no output named 'nope'"):
                session.output["nope"]
            with pytest.raises(KeyError):
                session.get("nope")
            with pytest.raises(UnknownBinding):
                session.set_value("xy", 1)  # a calc, not a value
            assert "out" in session.output
            assert "nope" not in session.output

    def test_duplicate_output_rejected(self):
        def server(input, output, session):
            output(lambda: 1, name="x")
            output(lambda: 2, name="x")

        with pytest.raises(ValueError, match="already bound"):
            SimulationSession(server)


class TestLifecycle:
    def test_start_returns_body_result(self):
        assert start(arithmetic_server, {}, lambda session: "done") == "done"

    def test_teardown_after_failed_body(self):
        seen = []

        def body(session):
            seen.append(session)
            session.set_inputs(x=1, y=1, z=1)
            assert session.output["out"] == "Result: 1"

        with pytest.raises(AssertionError):
            start(arithmetic_server, None, body)
        assert seen[0].closed

    def test_accessors_fail_after_teardown(self):
        with simulate(arithmetic_server) as session:
            session.set_inputs(x=1, y=1, z=1)
            xy = session.returned
        assert xy is None

        for access in (
            lambda: session.output["out"],
            lambda: session.get("xy"),
            lambda: session.set_inputs(x=2),
            lambda: session.elapse(10),
            lambda: session.flush(),
            lambda: session.input,
            lambda: session.get_returned(),
            lambda: session.snapshot(),
        ):
            with pytest.raises(SessionAlreadyTornDown):
                access()

    def test_captured_handles_fail_after_teardown(self):
        handles = []

        def server(input, output, session):
            @session.calc
            def n():
                return input.n()

            handles.append(n)

        with simulate(server) as session:
            session.set_inputs(n=1)
            assert handles[0]() == 1
        with pytest.raises(SessionAlreadyTornDown):
            handles[0]()

    def test_close_is_idempotent(self):
        session = SimulationSession(arithmetic_server)
        session.close()
        session.close()
        assert session.closed
        assert "closed" in repr(session)

    def test_sessions_are_independent(self):
        with simulate(arithmetic_server) as first, simulate(arithmetic_server) as second:
            first.set_inputs(x=3, y=1, z=1)
            second.set_inputs(x=1, y=1, z=1)
            assert first.output["out"] == "Result: 4"
            assert second.output["out"] == "Result: 0"
            assert first.graph is not second.graph

    def test_logs_lifecycle(self, caplog):
        with caplog.at_level(logging.INFO, logger="reactsim.session"):
            with simulate(arithmetic_server):
                pass
        assert "Started session for arithmetic_server" in caplog.text
        assert "Tore down session" in caplog.text


class TestServerContext:
    def test_args_reach_server(self):
        def server(input, output, session, factor):
            @output.text
            def scaled():
                return req(input.n()) * factor

        with simulate(server, factor=3) as session:
            session.set_inputs(n=2)
            assert session.output["scaled"] == "6"
            assert session.args == {"factor": 3}

    def test_plain_return_value(self):
        def server(input, output, session):
            return {"version": 2}

        with simulate(server) as session:
            assert session.returned == {"version": 2}
            assert session.get_returned() == {"version": 2}

    def test_reactive_return_value_is_read_through_graph(self):
        def server(input, output, session):
            @session.calc
            def doubled():
                return req(input.n()) * 2

            return doubled

        with simulate(server) as session:
            assert isinstance(session.returned, Calc)
            session.set_inputs(n=5)
            assert session.get_returned() == 10

    def test_effects_run_at_start_and_on_change(self):
        log = []

        def server(input, output, session):
            @session.effect
            def record():
                log.append(input.x())

        with simulate(server) as session:
            assert log == [UNSET]
            session.set_inputs(x=1)
            assert log == [UNSET, 1]

    def test_effect_feeding_a_value(self):
        def server(input, output, session):
            total = session.value(0, name="total")

            @session.effect
            def accumulate():
                n = input.n()
                if n is not UNSET:
                    total.set(session.isolate(total) + n)

            @output.text
            def shown():
                return total()

        with simulate(server) as session:
            assert session.output["shown"] == "0"
            session.set_inputs(n=2)
            session.set_inputs(n=3)
            assert session.get("total") == 5
            assert session.output["shown"] == "5"

    def test_timer_output(self):
        def server(input, output, session):
            tick = session.timer(1000)

            @output.text
            def clock():
                return f"t={session.now} ticks={tick()}"

        with simulate(server) as session:
            assert session.output["clock"] == "t=0 ticks=0"
            session.elapse(2500)
            assert session.now == 2500
            assert session.output["clock"] == "t=2500 ticks=1"

    def test_output_text_renders_none_as_empty(self):
        def server(input, output, session):
            @output.text
            def blank():
                return None

            @output(name="raw")
            def _raw():
                return None

        with simulate(server) as session:
            assert session.output["blank"] == ""
            assert session.output["raw"] is None
            assert list(session.output) == ["blank", "raw"]
            assert len(session.output) == 2

    def test_snapshot_for_external_diffing(self):
        with simulate(arithmetic_server) as session:
            session.set_inputs(x=2, y=1, z=1)
            assert session.snapshot() == {"out": "Result: 2"}

    def test_effect_waits_for_required_input(self):
        seen = []

        def server(input, output, session):
            @session.effect
            def record():
                seen.append(req(input.x()))

        with simulate(server) as session:
            assert seen == []
            session.set_inputs(x=1)
            assert seen == [1]
            assert session.flush() == 0
            session.set_inputs(x=2)
            assert seen == [1, 2]

    def test_output_writing_a_value_when_read(self):
        def server(input, output, session):
            v = session.value(0, name="v")

            @output.text
            def a():
                return v()

            @output.text
            def b():
                v.set(5)
                return "wrote"

        with simulate(server) as session:
            assert session.output["a"] == "0"
            assert session.output["b"] == "wrote"
            assert session.output["a"] == "5"
            assert session.output["b"] == "wrote"
