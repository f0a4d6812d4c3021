"""Expected span tree model, the causal shape a test wants to see."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from trace_conformance.errors import ExpectationError
from trace_conformance.parser import ObservedSpan


class SpanKind(Enum):
    CLIENT = "CLIENT"
    SERVER = "SERVER"
    PRODUCER = "PRODUCER"
    CONSUMER = "CONSUMER"
    INTERNAL = "INTERNAL"


@dataclass(frozen=True)
class AnyName:
    """Matches every name, including the empty one."""

    def matches(self, value: str) -> bool:
        return True

    def __str__(self) -> str:
        return "*"


@dataclass(frozen=True)
class Exact:
    value: str

    def matches(self, value: str) -> bool:
        return value == self.value

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class Pattern:
    """Full-match regular expression over a name."""

    regex: re.Pattern

    def matches(self, value: str) -> bool:
        return self.regex.fullmatch(value) is not None

    def __str__(self) -> str:
        return f"/{self.regex.pattern}/"


NamePredicate = Union[AnyName, Exact, Pattern]

ANY = AnyName()


def name_predicate(value: Any) -> NamePredicate:
    """Coerce a loose value into a NamePredicate.

    ``None`` becomes ANY, a string becomes Exact, a compiled regex becomes
    Pattern. Predicates pass through unchanged.
    """
    if value is None:
        return ANY
    if isinstance(value, (AnyName, Exact, Pattern)):
        return value
    if isinstance(value, str):
        return Exact(value)
    if isinstance(value, re.Pattern):
        return Pattern(value)
    raise ExpectationError(f"cannot use {value!r} as a name predicate")


@dataclass(frozen=True)
class SpanExpectation:
    """One node of an expected span tree.

    Children are ordered: they must appear under the matched span in the
    same order, though unrelated spans may sit between them. A node without
    children places no constraint on the observed span's own children.
    """

    service: NamePredicate = ANY
    name: NamePredicate = ANY
    kind: Optional[SpanKind] = None
    remote_service: NamePredicate = ANY
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), hash=False)
    note: str = ""
    children: tuple[SpanExpectation, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "service", name_predicate(self.service))
        object.__setattr__(self, "name", name_predicate(self.name))
        object.__setattr__(self, "remote_service", name_predicate(self.remote_service))
        if isinstance(self.kind, str):
            object.__setattr__(self, "kind", SpanKind(self.kind.upper()))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(self, "children", tuple(self.children))

    def mismatch(self, span: ObservedSpan) -> Optional[str]:
        """Return why ``span`` does not satisfy this node, or None if it does."""
        if not self.service.matches(span.service_name):
            return f"service {span.service_name!r} does not match {self.service}"
        if not self.name.matches(span.name):
            return f"name {span.name!r} does not match {self.name}"
        if self.kind is not None and span.kind != self.kind.value:
            return f"kind {span.kind or 'UNSET'} is not {self.kind.value}"
        if not self.remote_service.matches(span.remote_service_name):
            return (
                f"remote service {span.remote_service_name!r} "
                f"does not match {self.remote_service}"
            )
        for key, want in self.tags.items():
            got = span.tags.get(key)
            if got != want:
                return f"tag {key}={got!r}, want {want!r}"
        return None

    def matches(self, span: ObservedSpan) -> bool:
        return self.mismatch(span) is None

    def size(self) -> int:
        return 1 + sum(child.size() for child in self.children)

    def describe(self) -> str:
        """One-line summary of the constraints on this node."""
        parts = [f"service={self.service}", f"name={self.name}"]
        if self.kind is not None:
            parts.append(f"kind={self.kind.value}")
        if not isinstance(self.remote_service, AnyName):
            parts.append(f"remote={self.remote_service}")
        if self.tags:
            parts.append("tags=" + ",".join(f"{k}={v}" for k, v in sorted(self.tags.items())))
        if self.note:
            parts.append(f"note={self.note!r}")
        return " ".join(parts)


_KEYS = {"service", "name", "kind", "remote_service", "tags", "note", "children"}


def _predicate_from_json(raw: Any, key: str) -> NamePredicate:
    if raw is None:
        return ANY
    if isinstance(raw, str):
        return Exact(raw)
    if isinstance(raw, dict) and set(raw) == {"pattern"} and isinstance(raw["pattern"], str):
        try:
            return Pattern(re.compile(raw["pattern"]))
        except re.error as exc:
            raise ExpectationError(f"invalid pattern for {key!r}: {exc}") from exc
    raise ExpectationError(f"{key!r} must be a string or {{\"pattern\": ...}}, got {raw!r}")


def _tag_value(key: str, raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    # as Zipkin renders them: true -> "true", 200 -> "200"
    if isinstance(raw, (bool, int, float)):
        return json.dumps(raw)
    raise ExpectationError(f"tag {key!r} must be a string, number or boolean, got {raw!r}")


def expectation_from_dict(data: Any) -> SpanExpectation:
    """Build a SpanExpectation tree from decoded JSON.

    Name fields take a string for an exact match, ``{"pattern": regex}`` for
    a regex, or are omitted to match anything.
    """
    if not isinstance(data, dict):
        raise ExpectationError(f"expectation node must be an object, got {data!r}")

    unknown = set(data) - _KEYS
    if unknown:
        raise ExpectationError(f"unknown expectation keys: {sorted(unknown)}")

    kind = data.get("kind")
    if kind is not None:
        try:
            kind = SpanKind(str(kind).upper())
        except ValueError as exc:
            raise ExpectationError(f"unknown span kind {data['kind']!r}") from exc

    tags = data.get("tags") or {}
    if not isinstance(tags, dict):
        raise ExpectationError(f"'tags' must be an object, got {tags!r}")

    children = data.get("children") or []
    if not isinstance(children, list):
        raise ExpectationError(f"'children' must be a list, got {children!r}")

    return SpanExpectation(
        service=_predicate_from_json(data.get("service"), "service"),
        name=_predicate_from_json(data.get("name"), "name"),
        kind=kind,
        remote_service=_predicate_from_json(data.get("remote_service"), "remote_service"),
        tags={str(k): _tag_value(str(k), v) for k, v in tags.items()},
        note=str(data.get("note", "")),
        children=tuple(expectation_from_dict(child) for child in children),
    )


def load_expectation(path: str) -> SpanExpectation:
    """Read an expectation tree from a JSON file."""
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ExpectationError(f"{path}: {exc}") from exc
    return expectation_from_dict(data)
