"""Span decoders for Zipkin v2 JSON and OTLP/JSON trace data."""

from __future__ import annotations

import gzip
import json
import sys
import warnings
from dataclasses import dataclass, field
from typing import IO, Any


@dataclass(frozen=True)
class ObservedSpan:
    """A single span as reported by the tracing backend."""

    trace_id: str
    span_id: str
    parent_span_id: str
    name: str
    service_name: str
    kind: str
    start_time: int
    duration: int = 0
    remote_service_name: str = ""
    tags: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def is_root(self) -> bool:
        return not self.parent_span_id


_OTLP_KINDS = {
    "SPAN_KIND_INTERNAL": "INTERNAL",
    "SPAN_KIND_SERVER": "SERVER",
    "SPAN_KIND_CLIENT": "CLIENT",
    "SPAN_KIND_PRODUCER": "PRODUCER",
    "SPAN_KIND_CONSUMER": "CONSUMER",
    "SPAN_KIND_UNSPECIFIED": "",
    # OTLP/JSON may also carry the enum number
    "0": "",
    "1": "INTERNAL",
    "2": "SERVER",
    "3": "CLIENT",
    "4": "PRODUCER",
    "5": "CONSUMER",
}


def normalize_id(raw_id: str | None) -> str:
    """Normalize a trace/span ID to a lowercase hex string.

    Handles hex strings (with or without mixed case) and empty/None values.
    """
    if not raw_id:
        return ""
    return str(raw_id).strip().lower()


def normalize_trace_id(raw_id: str | None) -> str:
    """Normalize a trace ID, left-padding 64-bit IDs to the 128-bit W3C form."""
    trace_id = normalize_id(raw_id)
    if trace_id and len(trace_id) < 32:
        return trace_id.rjust(32, "0")
    return trace_id


def _stringify_tags(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items()}


def _endpoint_service(endpoint: Any) -> str:
    if not isinstance(endpoint, dict):
        return ""
    return endpoint.get("serviceName") or ""


def parse_zipkin_span(raw: dict[str, Any]) -> ObservedSpan:
    """Convert one Zipkin v2 span object into an ObservedSpan.

    Raises ValueError if the span has no ``traceId`` or ``id``.
    """
    trace_id = normalize_trace_id(raw.get("traceId"))
    span_id = normalize_id(raw.get("id"))
    if not trace_id or not span_id:
        raise ValueError("span is missing traceId or id")

    local = raw.get("localEndpoint")
    remote = raw.get("remoteEndpoint")

    return ObservedSpan(
        trace_id=trace_id,
        span_id=span_id,
        parent_span_id=normalize_id(raw.get("parentId")),
        name=raw.get("name") or "",
        service_name=_endpoint_service(local),
        kind=str(raw.get("kind") or "").upper(),
        start_time=int(raw.get("timestamp") or 0),
        duration=int(raw.get("duration") or 0),
        remote_service_name=_endpoint_service(remote),
        tags=_stringify_tags(raw.get("tags")),
    )


def parse_zipkin_trace(data: Any) -> list[ObservedSpan]:
    """Decode a Zipkin ``/api/v2/trace/{id}`` response body.

    Individual malformed spans are skipped with a warning.
    Raises ValueError if the document is not a JSON array.
    """
    if not isinstance(data, list):
        raise ValueError("Zipkin trace must be a JSON array of spans")

    spans: list[ObservedSpan] = []
    for index, raw in enumerate(data):
        if not isinstance(raw, dict):
            warnings.warn(f"Skipping non-object span at index {index}", stacklevel=2)
            continue
        try:
            spans.append(parse_zipkin_span(raw))
        except (TypeError, ValueError) as exc:
            warnings.warn(f"Skipping malformed span at index {index}: {exc}", stacklevel=2)
    return spans


def _otlp_value(value_obj: Any) -> str:
    """Render an OTLP attribute value object as a tag string."""
    if not isinstance(value_obj, dict):
        return ""
    for key in ("string_value", "stringValue"):
        if key in value_obj:
            return str(value_obj[key])
    for key in ("int_value", "intValue"):
        if key in value_obj:
            return str(int(value_obj[key]))
    for key in ("double_value", "doubleValue"):
        if key in value_obj:
            return str(float(value_obj[key]))
    for key in ("bool_value", "boolValue"):
        if key in value_obj:
            return "true" if value_obj[key] else "false"
    return ""


def _otlp_attributes(attrs: Any) -> dict[str, str]:
    if not isinstance(attrs, list):
        return {}
    return {
        attr["key"]: _otlp_value(attr.get("value"))
        for attr in attrs
        if isinstance(attr, dict) and attr.get("key")
    }


def _otlp_span(raw: dict[str, Any], service_name: str) -> ObservedSpan:
    trace_id = normalize_trace_id(raw.get("trace_id") or raw.get("traceId"))
    span_id = normalize_id(raw.get("span_id") or raw.get("spanId"))
    if not trace_id or not span_id:
        raise ValueError("span is missing trace_id or span_id")

    start_nano = int(raw.get("start_time_unix_nano") or raw.get("startTimeUnixNano") or 0)
    end_nano = int(raw.get("end_time_unix_nano") or raw.get("endTimeUnixNano") or 0)
    tags = _otlp_attributes(raw.get("attributes"))

    return ObservedSpan(
        trace_id=trace_id,
        span_id=span_id,
        parent_span_id=normalize_id(raw.get("parent_span_id") or raw.get("parentSpanId")),
        name=raw.get("name") or "",
        service_name=service_name,
        kind=_OTLP_KINDS.get(str(raw.get("kind", "")), ""),
        start_time=start_nano // 1000,
        duration=max(end_nano - start_nano, 0) // 1000,
        remote_service_name=tags.get("peer.service", ""),
        tags=tags,
    )


def parse_otlp_line(line: str) -> list[ObservedSpan]:
    """Parse a single OTLP/JSON ``ExportTraceServiceRequest`` line.

    Raises ValueError if the JSON is malformed or has no resource spans.
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("Line is not a JSON object")

    resource_spans = data.get("resource_spans", data.get("resourceSpans"))
    if not isinstance(resource_spans, list):
        raise ValueError("Missing or invalid resource_spans")

    spans: list[ObservedSpan] = []
    for rs in resource_spans:
        if not isinstance(rs, dict):
            continue
        resource = rs.get("resource", {})
        resource_attrs = _otlp_attributes(
            resource.get("attributes") if isinstance(resource, dict) else None
        )
        service_name = resource_attrs.get("service.name", "")

        for ss in rs.get("scope_spans") or rs.get("scopeSpans") or []:
            if not isinstance(ss, dict):
                continue
            for raw in ss.get("spans") or []:
                if not isinstance(raw, dict):
                    continue
                try:
                    spans.append(_otlp_span(raw, service_name))
                except (TypeError, ValueError):
                    continue
    return spans


def parse_stream(stream: IO) -> list[ObservedSpan]:
    """Parse a Zipkin JSON array document or an OTLP NDJSON stream.

    The format is picked from the first non-blank character: ``[`` means
    Zipkin, anything else is treated as NDJSON. Malformed NDJSON lines are
    skipped with warnings.
    """
    text = stream.read()
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    stripped = text.strip()
    if not stripped:
        return []

    if stripped.startswith("["):
        return parse_zipkin_trace(json.loads(stripped))

    spans: list[ObservedSpan] = []
    for line_num, line in enumerate(stripped.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            spans.extend(parse_otlp_line(line))
        except ValueError as exc:
            warnings.warn(f"Skipping malformed line {line_num}: {exc}", stacklevel=2)
    return spans


def parse_file(path: str) -> list[ObservedSpan]:
    """Parse a saved trace file (plain or gzip-compressed), or ``-`` for stdin."""
    if path == "-":
        return parse_stream(sys.stdin)

    if path.endswith(".gz"):
        with gzip.open(path, "rt", encoding="utf-8") as f:
            return parse_stream(f)

    with open(path, encoding="utf-8") as f:
        return parse_stream(f)
