"""Exception hierarchy for trace conformance verification."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trace_conformance.diagnostics import FailureReport


class ConformanceError(Exception):
    """Base class for every error raised by this package."""


class BackendError(ConformanceError):
    """A tracing backend or recording sink could not be read.

    Transient: poll loops record it and keep polling until the deadline.
    """


class MalformedTraceError(ConformanceError):
    """Span records are structurally inconsistent. Never retried."""


class ExpectationError(ConformanceError):
    """A declarative expectation tree could not be built."""


class TestSetupError(ConformanceError):
    """The test itself is set up wrong. Fatal, never retried."""

    __test__ = False


class NoTraceIDError(TestSetupError):
    """No captured event carried a usable trace context."""


class MultipleTraceIDsError(TestSetupError):
    """Captured events carried more than one distinct trace id."""

    def __init__(self, trace_ids: list[str]) -> None:
        self.trace_ids = trace_ids
        super().__init__(f"multiple distinct trace IDs in captured events: {trace_ids}")


class EventsNotFoundError(TestSetupError):
    """The recording sink never held enough matching events."""


class ConformanceFailure(ConformanceError):
    """The expected span tree never appeared before the deadline."""

    def __init__(self, report: FailureReport) -> None:
        self.report = report
        super().__init__(report.render())
