"""Human-readable renderings of expected and observed span trees."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from trace_conformance.expectation import SpanExpectation
from trace_conformance.matcher import MatchResult
from trace_conformance.parser import ObservedSpan
from trace_conformance.tree import SpanNode

_INDENT = "  "


def render_expectation(expected: SpanExpectation) -> str:
    """Render an expected tree, one node per line, children indented."""
    lines: List[str] = []

    def visit(node: SpanExpectation, depth: int) -> None:
        lines.append(f"{_INDENT * depth}- {node.describe()}")
        for child in node.children:
            visit(child, depth + 1)

    visit(expected, 0)
    return "\n".join(lines)


def describe_span(span: ObservedSpan) -> str:
    parts = [
        f"service={span.service_name!r}",
        f"name={span.name!r}",
        f"kind={span.kind or 'UNSET'}",
    ]
    if span.remote_service_name:
        parts.append(f"remote={span.remote_service_name!r}")
    parts.append(f"id={span.span_id}")
    return " ".join(parts)


def render_forest(forest: List[SpanNode]) -> str:
    """Render an observed forest in the same layout as render_expectation."""
    if not forest:
        return "(no spans)"
    lines: List[str] = []

    def visit(node: SpanNode, depth: int) -> None:
        lines.append(f"{_INDENT * depth}- {describe_span(node.span)}")
        for child in node.children:
            visit(child, depth + 1)

    for root in forest:
        visit(root, 0)
    return "\n".join(lines)


def render_match(result: MatchResult) -> str:
    """List the (expected, observed) bindings of a successful match."""
    if not result.matched:
        return "(no match)"
    return "\n".join(
        f"{b.expected.describe()}\n{_INDENT}=> {describe_span(b.observed.span)}"
        for b in result.bindings
    )


def pretty_print_trace(spans: List[ObservedSpan]) -> str:
    """Dump raw spans as indented JSON, ordered by start time."""
    ordered = sorted(spans, key=lambda s: (s.start_time, s.span_id))
    return json.dumps([asdict(s) for s in ordered], indent=2, sort_keys=True)


@dataclass
class FailureReport:
    """Everything needed to diagnose a failed verification without re-running it."""

    trace_id: str
    expected: SpanExpectation
    forest: List[SpanNode] = field(default_factory=list)
    spans: List[ObservedSpan] = field(default_factory=list)
    elapsed: float = 0.0
    attempts: int = 0
    last_error: Optional[Exception] = None
    explanation: tuple[str, ...] = ()

    def render(self) -> str:
        sections = [
            f"no matching subtree in trace {self.trace_id} "
            f"after {self.attempts} attempt(s) in {self.elapsed:.1f}s",
        ]
        if self.last_error is not None:
            sections.append(f"last backend error: {self.last_error}")
        sections.append("want:\n" + render_expectation(self.expected))
        sections.append("got:\n" + render_forest(self.forest))
        if self.explanation:
            sections.append("match attempts:\n" + "\n".join(self.explanation))
        if self.spans:
            sections.append("raw spans:\n" + pretty_print_trace(self.spans))
        return "\n".join(sections)
