"""
Pytest configuration, fakes and Hypothesis strategies for trace conformance tests.

This module provides span factories, in-memory stand-ins for the tracing
backend and recording sink, a fake clock for poll-loop tests, and Hypothesis
strategies that generate Zipkin spans and random span trees.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest
from hypothesis import strategies as st

from trace_conformance.correlation import CapturedEvent
from trace_conformance.parser import ObservedSpan

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"


# ============================================================================
# Span Factories
# ============================================================================


def make_span(
    span_id: str,
    parent_span_id: str = "",
    service_name: str = "svc",
    name: str = "",
    start_time: int = 0,
    kind: str = "SERVER",
    trace_id: str = TRACE_ID,
    **kwargs: Any,
) -> ObservedSpan:
    return ObservedSpan(
        trace_id=trace_id,
        span_id=span_id,
        parent_span_id=parent_span_id,
        name=name or service_name,
        service_name=service_name,
        kind=kind,
        start_time=start_time,
        duration=kwargs.get("duration", 10),
        remote_service_name=kwargs.get("remote_service_name", ""),
        tags=kwargs.get("tags", {}),
    )


def traceparent(trace_id: str = TRACE_ID, span_id: str = "00f067aa0ba902b7") -> str:
    return f"00-{trace_id}-{span_id}-01"


def broker_trace() -> list[ObservedSpan]:
    """Ingress -> Broker -> {SidecarProxy, Trigger -> Receiver}, listed out of order."""
    return [
        make_span("05", "04", "receiver", start_time=50),
        make_span("03", "02", "sidecar-proxy", start_time=25),
        make_span("01", "", "ingress", start_time=10),
        make_span("04", "02", "trigger", start_time=40),
        make_span("02", "01", "broker", start_time=20),
    ]


# ============================================================================
# Fakes
# ============================================================================


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedBackend:
    """Tracing backend that replays one scripted response per call.

    Each entry is a span list or an exception to raise. The last entry is
    repeated once the script runs out.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[str] = []
        self.timeouts: list[float | None] = []

    def get_trace(self, trace_id: str, timeout: float | None = None) -> list[ObservedSpan]:
        self.calls.append(trace_id)
        self.timeouts.append(timeout)
        index = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return list(response)


class ListSink:
    """Recording sink backed by a list of event batches, one per call."""

    def __init__(self, *batches: list[CapturedEvent]) -> None:
        self.batches = list(batches)
        self.calls = 0
        self.timeouts: list[float | None] = []

    def list_events(self, timeout: float | None = None) -> list[CapturedEvent]:
        self.calls += 1
        self.timeouts.append(timeout)
        index = min(self.calls, len(self.batches)) - 1
        batch = self.batches[index]
        if isinstance(batch, Exception):
            raise batch
        return list(batch)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def event_with(headers: dict | None, event_type: str = "dev.knative.test") -> CapturedEvent:
    return CapturedEvent(event={"type": event_type, "id": "1"}, headers=headers)


def of_type(event_type: str) -> Callable[[CapturedEvent], bool]:
    return lambda ev: ev.event.get("type") == event_type


# ============================================================================
# Hypothesis Strategies
# ============================================================================


@st.composite
def hex_id(draw, length: int = 16) -> str:
    """
    Generate a valid hexadecimal ID string.

    Args:
        length: Number of hex characters (default 16 for span ids, 32 for trace ids)
    """
    hex_chars = "0123456789abcdef"
    return "".join(draw(st.lists(st.sampled_from(hex_chars), min_size=length, max_size=length)))


@st.composite
def zipkin_span(draw, span_id: str, parent_id: str | None, trace_id: str) -> dict:
    """
    Generate a Zipkin v2 span object.

    Args:
        span_id: Span id to use (callers keep ids unique within a trace)
        parent_id: Parent span id, or None for a root span
        trace_id: Trace id shared by the whole tree
    """
    # Fixed reference time (microseconds) to keep examples reproducible
    reference_us = 1700000000 * 1_000_000
    span = {
        "traceId": trace_id,
        "id": span_id,
        "name": draw(st.sampled_from(["get", "post", "dispatch", "receive", "filter"])),
        "kind": draw(st.sampled_from(["SERVER", "CLIENT", "PRODUCER", "CONSUMER"])),
        "timestamp": draw(st.integers(min_value=reference_us, max_value=reference_us + 10**6)),
        "duration": draw(st.integers(min_value=1, max_value=10**6)),
        "localEndpoint": {
            "serviceName": draw(
                st.sampled_from(["ingress", "broker", "trigger", "receiver", "proxy"])
            )
        },
        "tags": draw(
            st.dictionaries(
                st.sampled_from(["http.method", "http.status_code", "messaging.system"]),
                st.sampled_from(["GET", "POST", "200", "202", "kafka"]),
                max_size=3,
            )
        ),
    }
    if parent_id is not None:
        span["parentId"] = parent_id
    return span


@st.composite
def span_tree(draw, max_depth: int = 3, max_children: int = 3) -> list[dict]:
    """
    Generate a hierarchical tree of Zipkin spans with parent-child relationships.

    Span ids are unique within the tree.

    Returns:
        List of Zipkin spans forming a valid tree, in generation order
    """
    trace_id = draw(hex_id(length=32))
    spans: list[dict] = []

    def generate_subtree(parent_id: str | None, depth: int) -> None:
        span_id = f"{len(spans) + 1:016x}"
        span = draw(zipkin_span(span_id, parent_id, trace_id))
        spans.append(span)

        if depth < max_depth:
            num_children = draw(st.integers(min_value=0, max_value=max_children))
            for _ in range(num_children):
                generate_subtree(span_id, depth + 1)

    generate_subtree(None, 0)
    return spans
