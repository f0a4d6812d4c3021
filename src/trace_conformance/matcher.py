"""Tolerant, ordered embedding of an expected span tree in an observed forest."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from trace_conformance.expectation import SpanExpectation
from trace_conformance.tree import SpanNode


@dataclass(frozen=True)
class Binding:
    expected: SpanExpectation
    observed: SpanNode


@dataclass(frozen=True)
class MatchResult:
    """One embedding of the expected tree, or none.

    ``bindings`` lists (expected, observed) pairs in pre-order of the
    expected tree. ``explanation`` is only filled in verbose mode.
    """

    bindings: tuple[Binding, ...] = ()
    explanation: tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return bool(self.bindings)

    def __bool__(self) -> bool:
        return self.matched

    @property
    def root(self) -> Optional[SpanNode]:
        return self.bindings[0].observed if self.bindings else None


class _Matcher:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.notes: List[str] = []

    def note(self, depth: int, message: str) -> None:
        if self.verbose:
            self.notes.append("  " * depth + message)

    def rooted(
        self, expected: SpanExpectation, node: SpanNode, depth: int = 0
    ) -> Optional[List[Binding]]:
        """Match ``expected`` with its root pinned to ``node``."""
        reason = expected.mismatch(node.span)
        if reason is not None:
            self.note(depth, f"{_label(node)}: {reason}")
            return None

        rest = self.children(expected.children, node.children, depth + 1)
        if rest is None:
            self.note(depth, f"{_label(node)}: matched, but its children did not")
            return None
        return [Binding(expected, node)] + rest

    def children(
        self,
        expected: tuple[SpanExpectation, ...],
        observed: List[SpanNode],
        depth: int,
    ) -> Optional[List[Binding]]:
        """Place ``expected`` as an ordered subsequence of ``observed``.

        Each expected child takes the earliest observed child it matches.
        Whether a pair matches does not depend on the other placements, so
        the earliest fit never has to be revisited.
        """
        bindings: List[Binding] = []
        j = 0
        for want in expected:
            for k in range(j, len(observed)):
                head = self.rooted(want, observed[k], depth)
                if head is not None:
                    bindings.extend(head)
                    j = k + 1
                    break
            else:
                self.note(depth, f"no child in order for expected [{want.describe()}]")
                return None
        return bindings

    def search(self, expected: SpanExpectation, forest: List[SpanNode]) -> Optional[List[Binding]]:
        for root in forest:
            for node in root.walk():
                bindings = self.rooted(expected, node)
                if bindings is not None:
                    return bindings
        return None


def _label(node: SpanNode) -> str:
    span = node.span
    return f"{span.service_name or '?'}/{span.name or '?'} [{span.span_id}]"


def match_subtree(
    expected: SpanExpectation, forest: List[SpanNode], verbose: bool = False
) -> MatchResult:
    """Find the first embedding of ``expected`` anywhere in ``forest``.

    Candidate roots are tried in pre-order (forest roots in order, then
    their descendants), so spans inserted above the interesting span are
    tolerated. Below a candidate root, expected children must match
    observed direct children in order; extra observed children are
    skipped. An empty forest never matches.
    """
    matcher = _Matcher(verbose)
    if not forest:
        matcher.note(0, "observed forest is empty")
    bindings = matcher.search(expected, forest)
    if bindings is None:
        return MatchResult(explanation=tuple(matcher.notes))
    return MatchResult(bindings=tuple(bindings), explanation=tuple(matcher.notes))
