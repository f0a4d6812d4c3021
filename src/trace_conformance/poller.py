"""Fixed-interval polling of the tracing backend and recording sink until a deadline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, List, Optional, TypeVar

from trace_conformance.backends import RecordingSink, TracingBackend
from trace_conformance.correlation import CapturedEvent
from trace_conformance.errors import BackendError, EventsNotFoundError
from trace_conformance.expectation import SpanExpectation
from trace_conformance.matcher import match_subtree
from trace_conformance.parser import ObservedSpan
from trace_conformance.tree import SpanNode, build_forest

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], None]
ForestPredicate = Callable[[List[SpanNode]], bool]
EventPredicate = Callable[[CapturedEvent], bool]


class PollState(Enum):
    """Terminal states of a polling run."""

    MATCHED = "matched"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    """Result of one polling run.

    ``last_observed`` is the last successfully read state, ``last_error`` the
    backend error from the final attempt (None if that read succeeded).
    """

    success: bool
    last_observed: T
    last_error: Optional[BackendError]
    attempts: int
    elapsed: float

    @property
    def state(self) -> PollState:
        return PollState.MATCHED if self.success else PollState.TIMED_OUT


def _poll(
    fetch: Callable[[float], T],
    accept: Callable[[T], bool],
    initial: T,
    what: str,
    timeout: float,
    interval: float,
    deadline: Optional[float],
    clock: Clock,
    sleep: Sleep,
) -> PollOutcome[T]:
    if timeout <= 0 or interval <= 0:
        raise ValueError(f"timeout and interval must be positive, got {timeout} and {interval}")

    start = clock()
    end = start + timeout
    if deadline is not None:
        end = min(end, deadline)

    observed = initial
    last_error: Optional[BackendError] = None
    attempts = 0

    while True:
        attempts += 1
        # the attempt at the deadline still gets one interval to answer
        budget = max(end - clock(), interval)
        try:
            observed = fetch(budget)
        except BackendError as exc:
            last_error = exc
            logger.debug("%s: attempt %d failed: %s", what, attempts, exc)
        else:
            last_error = None
            if accept(observed):
                elapsed = clock() - start
                logger.info("%s: matched after %d attempt(s), %.2fs", what, attempts, elapsed)
                return PollOutcome(True, observed, None, attempts, elapsed)
            logger.debug("%s: attempt %d not matched yet", what, attempts)

        now = clock()
        if now >= end:
            elapsed = now - start
            logger.info("%s: timed out after %d attempt(s), %.2fs", what, attempts, elapsed)
            return PollOutcome(False, observed, last_error, attempts, elapsed)
        sleep(min(interval, end - now))


def expect_subtree(expected: SpanExpectation) -> ForestPredicate:
    """Trace predicate that holds once ``expected`` is embedded in the forest."""

    def predicate(forest: List[SpanNode]) -> bool:
        return match_subtree(expected, forest).matched

    return predicate


def poll_trace(
    backend: TracingBackend,
    trace_id: str,
    predicate: ForestPredicate,
    *,
    timeout: float,
    interval: float,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> PollOutcome[List[ObservedSpan]]:
    """Re-fetch trace ``trace_id`` until ``predicate`` holds on its forest.

    Every attempt rebuilds the forest from the complete span list. Each
    fetch is limited to the time left before the deadline. Backend errors
    are retried until the deadline; MalformedTraceError propagates.
    """

    def accept(spans: List[ObservedSpan]) -> bool:
        return predicate(build_forest(spans))

    return _poll(
        lambda budget: backend.get_trace(trace_id, timeout=budget),
        accept,
        [],
        f"trace {trace_id}",
        timeout,
        interval,
        deadline,
        clock,
        sleep,
    )


def poll_events(
    sink: RecordingSink,
    predicate: EventPredicate,
    *,
    at_least: int = 1,
    timeout: float,
    interval: float,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> PollOutcome[List[CapturedEvent]]:
    """Re-read the sink until at least ``at_least`` events satisfy ``predicate``."""
    return _poll(
        lambda budget: [ev for ev in sink.list_events(timeout=budget) if predicate(ev)],
        lambda matches: len(matches) >= at_least,
        [],
        "recorded events",
        timeout,
        interval,
        deadline,
        clock,
        sleep,
    )


def assert_at_least(
    sink: RecordingSink,
    predicate: EventPredicate,
    n: int = 1,
    *,
    timeout: float,
    interval: float,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> List[CapturedEvent]:
    """Return the matching events, or raise EventsNotFoundError on exhaustion."""
    outcome = poll_events(
        sink,
        predicate,
        at_least=n,
        timeout=timeout,
        interval=interval,
        deadline=deadline,
        clock=clock,
        sleep=sleep,
    )
    if not outcome.success:
        message = (
            f"saw {len(outcome.last_observed)} matching event(s), want at least {n}, "
            f"after {outcome.attempts} attempt(s) in {outcome.elapsed:.1f}s"
        )
        if outcome.last_error is not None:
            message += f"; last error: {outcome.last_error}"
        raise EventsNotFoundError(message)
    return outcome.last_observed
