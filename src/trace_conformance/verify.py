"""End-to-end verification flow: captured event -> trace ID -> expected span tree."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from trace_conformance.backends import RecordingSink, TracingBackend
from trace_conformance.config import VerifierConfig
from trace_conformance.correlation import CapturedEvent, trace_id_from_events
from trace_conformance.diagnostics import FailureReport, render_match
from trace_conformance.errors import ConformanceFailure
from trace_conformance.expectation import SpanExpectation
from trace_conformance.matcher import MatchResult, match_subtree
from trace_conformance.parser import ObservedSpan
from trace_conformance.poller import (
    Clock,
    EventPredicate,
    PollOutcome,
    Sleep,
    assert_at_least,
    expect_subtree,
    poll_trace,
)
from trace_conformance.tree import build_forest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationReport:
    trace_id: str
    match: MatchResult
    outcome: PollOutcome[List[ObservedSpan]]
    events: tuple[CapturedEvent, ...] = ()


def verify_trace(
    backend: TracingBackend,
    trace_id: str,
    expected: SpanExpectation,
    config: Optional[VerifierConfig] = None,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> VerificationReport:
    """Poll ``trace_id`` until ``expected`` is embedded in it.

    Raises ConformanceFailure with a FailureReport on timeout.
    """
    config = config or VerifierConfig()
    outcome = poll_trace(
        backend,
        trace_id,
        expect_subtree(expected),
        timeout=config.trace_timeout,
        interval=config.poll_interval,
        deadline=deadline,
        clock=clock,
        sleep=sleep,
    )

    forest = build_forest(outcome.last_observed)
    if outcome.success:
        result = match_subtree(expected, forest)
        logger.info("trace %s matches:\n%s", trace_id, render_match(result))
        return VerificationReport(trace_id=trace_id, match=result, outcome=outcome)

    # the last fetch was already rejected; rerun only to explain why
    explanation = match_subtree(expected, forest, verbose=True).explanation
    report = FailureReport(
        trace_id=trace_id,
        expected=expected,
        forest=forest,
        spans=outcome.last_observed,
        elapsed=outcome.elapsed,
        attempts=outcome.attempts,
        last_error=outcome.last_error,
        explanation=explanation,
    )
    logger.error("%s", report.render())
    raise ConformanceFailure(report)


def verify_trace_conformance(
    sink: RecordingSink,
    backend: TracingBackend,
    event_predicate: EventPredicate,
    expected: SpanExpectation,
    config: Optional[VerifierConfig] = None,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> VerificationReport:
    """Run one complete verification flow.

    Waits for a matching event in the sink, extracts the trace ID from its
    propagation headers, then polls the tracing backend for the expected
    shape. Missing events and missing or conflicting trace IDs raise
    TestSetupError subclasses immediately; a shape that never appears raises
    ConformanceFailure.
    """
    config = config or VerifierConfig()
    events = assert_at_least(
        sink,
        event_predicate,
        1,
        timeout=config.event_timeout,
        interval=config.poll_interval,
        deadline=deadline,
        clock=clock,
        sleep=sleep,
    )
    trace_id = trace_id_from_events(events)
    logger.info("verifying trace %s from %d captured event(s)", trace_id, len(events))

    report = verify_trace(backend, trace_id, expected, config, deadline, clock, sleep)
    return VerificationReport(
        trace_id=report.trace_id,
        match=report.match,
        outcome=report.outcome,
        events=tuple(events),
    )
