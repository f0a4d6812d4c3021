"""Span tree builder: reconstructs causal hierarchy from a flat span list."""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from trace_conformance.errors import MalformedTraceError
from trace_conformance.parser import ObservedSpan


@dataclass
class SpanNode:
    """A node in the observed span tree wrapping an ObservedSpan with parent/child links."""

    span: ObservedSpan
    children: List[SpanNode] = field(default_factory=list)
    parent: Optional[SpanNode] = field(default=None, repr=False, compare=False)

    def walk(self) -> Iterator[SpanNode]:
        """Yield this node and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def size(self) -> int:
        return sum(1 for _ in self.walk())


def _order_key(node: SpanNode) -> tuple[int, str]:
    return (node.span.start_time, node.span.span_id)


def group_by_trace(spans: List[ObservedSpan]) -> Dict[str, List[ObservedSpan]]:
    """Group spans by trace_id into a dict."""
    groups: Dict[str, List[ObservedSpan]] = {}
    for span in spans:
        groups.setdefault(span.trace_id, []).append(span)
    return groups


def _index_spans(trace_spans: List[ObservedSpan]) -> Dict[str, SpanNode]:
    nodes: Dict[str, SpanNode] = {}
    for s in trace_spans:
        existing = nodes.get(s.span_id)
        if existing is None:
            nodes[s.span_id] = SpanNode(span=s)
            continue
        if existing.span != s:
            raise MalformedTraceError(
                f"span_id {s.span_id!r} in trace {s.trace_id!r} is reported by two "
                f"conflicting spans: {existing.span!r} and {s!r}"
            )
        warnings.warn(
            f"Duplicate span_id {s.span_id!r} in trace {s.trace_id!r}, keeping one copy",
            stacklevel=3,
        )
    return nodes


def build_forest(spans: List[ObservedSpan]) -> List[SpanNode]:
    """Build the observed span forest from a flat, unordered span list.

    Returns a list of root SpanNode objects.

    - Groups spans by trace_id
    - Links parent-child relationships via parent_span_id -> span_id
    - Spans with no parent, a self-referencing parent, or a parent not in
      the fetch are roots (the backend may still be ingesting the trace)
    - Identical duplicate span_ids are collapsed with a warning; conflicting
      duplicates raise MalformedTraceError
    - Parent cycles raise MalformedTraceError
    - Children and roots are sorted by (start_time, span_id)
    """
    if not spans:
        return []

    roots: List[SpanNode] = []

    for trace_id, trace_spans in group_by_trace(spans).items():
        nodes = _index_spans(trace_spans)
        trace_roots: List[SpanNode] = []

        for node in nodes.values():
            pid = node.span.parent_span_id
            if pid and pid != node.span.span_id and pid in nodes:
                parent_node = nodes[pid]
                node.parent = parent_node
                parent_node.children.append(node)
            else:
                trace_roots.append(node)

        reachable = sum(root.size() for root in trace_roots)
        if reachable != len(nodes):
            raise MalformedTraceError(
                f"trace {trace_id!r} has a parent cycle: "
                f"{len(nodes) - reachable} span(s) are unreachable from any root"
            )

        for node in nodes.values():
            node.children.sort(key=_order_key)
        roots.extend(trace_roots)

    roots.sort(key=_order_key)
    return roots
