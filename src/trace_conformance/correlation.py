"""Ties captured events to the trace that carried them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagators.textmap import Getter
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from trace_conformance.errors import MultipleTraceIDsError, NoTraceIDError

HeaderValue = Union[str, Sequence[str]]
Headers = Mapping[str, HeaderValue]


@dataclass
class CapturedEvent:
    """An event as stored by the recording sink, with the HTTP headers it arrived with."""

    event: dict[str, Any] = field(default_factory=dict)
    headers: Optional[Headers] = None
    sequence: int = 0
    error: str = ""
    observer: str = ""
    time: str = ""


class _CaseInsensitiveGetter(Getter[Headers]):
    def get(self, carrier: Headers, key: str) -> Optional[List[str]]:
        wanted = key.lower()
        for name, value in carrier.items():
            if name.lower() != wanted:
                continue
            if isinstance(value, str):
                return [value]
            return [str(v) for v in value] or None
        return None

    def keys(self, carrier: Headers) -> List[str]:
        return list(carrier.keys())


_getter = _CaseInsensitiveGetter()
_propagator = TraceContextTextMapPropagator()


def extract_trace_id(headers: Optional[Headers]) -> Optional[str]:
    """Decode the W3C trace context in ``headers`` into a 32-char hex trace ID.

    Absent or malformed headers yield None.
    """
    if not headers:
        return None
    ctx = _propagator.extract(headers, context=Context(), getter=_getter)
    span_context = trace.get_current_span(ctx).get_span_context()
    if not span_context.is_valid:
        return None
    return trace.format_trace_id(span_context.trace_id)


def trace_id_from_events(events: Iterable[CapturedEvent]) -> str:
    """Return the trace ID carried by the captured events.

    The first event with a usable trace context wins. Raises
    MultipleTraceIDsError if the events disagree and NoTraceIDError if none
    carries a trace context. Both mean the test is broken and must not be
    retried.
    """
    events = list(events)
    seen: List[str] = []
    for ev in events:
        trace_id = extract_trace_id(ev.headers)
        if trace_id is not None and trace_id not in seen:
            seen.append(trace_id)

    if not seen:
        raise NoTraceIDError(f"no trace ID in {len(events)} captured event(s): {events!r}")
    if len(seen) > 1:
        raise MultipleTraceIDsError(seen)
    return seen[0]
