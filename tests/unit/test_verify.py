"""End-to-end tests of the verification flow against in-memory fakes."""

import logging

import pytest

from trace_conformance.config import VerifierConfig
from trace_conformance.errors import (
    BackendError,
    ConformanceFailure,
    EventsNotFoundError,
    MultipleTraceIDsError,
    NoTraceIDError,
)
from trace_conformance.expectation import SpanExpectation
from trace_conformance import verify as verify_module
from trace_conformance.verify import verify_trace, verify_trace_conformance
from tests.conftest import (
    TRACE_ID,
    ListSink,
    ScriptedBackend,
    broker_trace,
    event_with,
    make_span,
    of_type,
    traceparent,
)

CONFIG = VerifierConfig(trace_timeout=10, event_timeout=5, poll_interval=1)

EXPECTED = SpanExpectation(
    service="ingress",
    note="broker ingress",
    children=(
        SpanExpectation(
            service="broker",
            children=(
                SpanExpectation(
                    service="trigger",
                    children=(SpanExpectation(service="receiver"),),
                ),
            ),
        ),
    ),
)


def received_event():
    return event_with({"Traceparent": [traceparent()]}, "dev.knative.test")


class TestVerifyTraceConformance:
    def test_broker_scenario_matches_on_third_poll(self, clock):
        sink = ListSink([received_event()])
        backend = ScriptedBackend([], [make_span("01", service_name="ingress")], broker_trace())

        report = verify_trace_conformance(
            sink,
            backend,
            of_type("dev.knative.test"),
            EXPECTED,
            CONFIG,
            clock=clock,
            sleep=clock.sleep,
        )

        assert report.trace_id == TRACE_ID
        assert backend.calls == [TRACE_ID] * 3
        assert report.outcome.attempts == 3
        matched = [b.observed.span.service_name for b in report.match.bindings]
        assert matched == ["ingress", "broker", "trigger", "receiver"]
        assert "sidecar-proxy" not in matched
        assert len(report.events) == 1

    def test_missing_event_is_fatal_before_tracing(self, clock):
        sink = ListSink([event_with({}, "unrelated")])
        backend = ScriptedBackend(broker_trace())
        with pytest.raises(EventsNotFoundError):
            verify_trace_conformance(
                sink, backend, of_type("dev.knative.test"), EXPECTED, CONFIG,
                clock=clock, sleep=clock.sleep,
            )
        assert backend.calls == []

    def test_event_without_trace_context_is_fatal(self, clock):
        sink = ListSink([event_with({"Content-Type": "application/json"})])
        backend = ScriptedBackend(broker_trace())
        with pytest.raises(NoTraceIDError):
            verify_trace_conformance(
                sink, backend, of_type("dev.knative.test"), EXPECTED, CONFIG,
                clock=clock, sleep=clock.sleep,
            )
        assert backend.calls == []
        assert clock.sleeps == []

    def test_conflicting_trace_ids_are_fatal(self, clock):
        sink = ListSink(
            [
                received_event(),
                event_with({"traceparent": traceparent("0af7651916cd43dd8448eb211c80319c")}),
            ]
        )
        with pytest.raises(MultipleTraceIDsError):
            verify_trace_conformance(
                sink, ScriptedBackend([]), of_type("dev.knative.test"), EXPECTED, CONFIG,
                clock=clock, sleep=clock.sleep,
            )


class TestVerifyTrace:
    def test_timeout_raises_with_report(self, clock, caplog):
        partial = [
            make_span("01", service_name="ingress"),
            make_span("02", "01", service_name="broker", start_time=1),
        ]
        backend = ScriptedBackend(partial)

        with caplog.at_level(logging.ERROR, logger="trace_conformance.verify"):
            with pytest.raises(ConformanceFailure) as excinfo:
                verify_trace(backend, TRACE_ID, EXPECTED, CONFIG, clock=clock, sleep=clock.sleep)

        report = excinfo.value.report
        assert report.trace_id == TRACE_ID
        assert report.attempts == 11
        assert report.elapsed == pytest.approx(10)
        assert report.forest[0].size() == 2
        assert report.explanation
        text = report.render()
        assert "want:" in text and "got:" in text
        assert "service='receiver'" in text
        assert report.spans == partial
        assert "raw spans:" in text
        assert '"span_id": "02"' in text
        assert any("no matching subtree" in r.message for r in caplog.records)

    def test_timeout_keeps_last_backend_error(self, clock):
        backend = ScriptedBackend([], BackendError("zipkin unavailable"))
        with pytest.raises(ConformanceFailure) as excinfo:
            verify_trace(backend, TRACE_ID, EXPECTED, CONFIG, clock=clock, sleep=clock.sleep)
        assert "zipkin unavailable" in str(excinfo.value)
        assert "(no spans)" in str(excinfo.value)

    def test_enclosing_deadline_stops_polling(self, clock):
        backend = ScriptedBackend([])
        with pytest.raises(ConformanceFailure) as excinfo:
            verify_trace(
                backend, TRACE_ID, EXPECTED, CONFIG,
                deadline=clock.now + 3, clock=clock, sleep=clock.sleep,
            )
        assert excinfo.value.report.elapsed == pytest.approx(3)

    def test_default_config(self, clock):
        report = verify_trace(
            ScriptedBackend(broker_trace()), TRACE_ID, EXPECTED, clock=clock, sleep=clock.sleep
        )
        assert report.match.matched
        assert report.events == ()

    @pytest.mark.parametrize(
        "responses,verbose_calls",
        [((broker_trace(),), [False]), (([],), [True])],
    )
    def test_final_rematch_is_verbose_only_on_timeout(
        self, clock, monkeypatch, responses, verbose_calls
    ):
        calls = []
        real_match = verify_module.match_subtree

        def recording_match(expected, forest, verbose=False):
            calls.append(verbose)
            return real_match(expected, forest, verbose)

        monkeypatch.setattr(verify_module, "match_subtree", recording_match)
        try:
            verify_trace(
                ScriptedBackend(*responses), TRACE_ID, EXPECTED, CONFIG,
                clock=clock, sleep=clock.sleep,
            )
        except ConformanceFailure:
            pass
        assert calls == verbose_calls
