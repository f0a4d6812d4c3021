"""Tests for trace ID extraction from captured event headers."""

import pytest

from trace_conformance.correlation import extract_trace_id, trace_id_from_events
from trace_conformance.errors import MultipleTraceIDsError, NoTraceIDError, TestSetupError
from tests.conftest import TRACE_ID, event_with, traceparent

OTHER_TRACE_ID = "0af7651916cd43dd8448eb211c80319c"


class TestExtractTraceId:
    def test_traceparent(self):
        assert extract_trace_id({"traceparent": traceparent()}) == TRACE_ID

    def test_header_name_case_insensitive(self):
        assert extract_trace_id({"Traceparent": traceparent()}) == TRACE_ID
        assert extract_trace_id({"TRACEPARENT": traceparent()}) == TRACE_ID

    def test_list_values(self):
        # record-events stores headers as lists of values
        assert extract_trace_id({"Traceparent": [traceparent()]}) == TRACE_ID

    @pytest.mark.parametrize(
        "headers",
        [
            None,
            {},
            {"Content-Type": "application/json"},
            {"traceparent": "garbage"},
            {"traceparent": []},
            {"traceparent": traceparent("0" * 32)},
            {"traceparent": traceparent(span_id="0" * 16)},
        ],
    )
    def test_not_found(self, headers):
        assert extract_trace_id(headers) is None

    def test_b3_header_alone_is_not_enough(self):
        assert extract_trace_id({"X-B3-TraceId": TRACE_ID}) is None


class TestTraceIdFromEvents:
    def test_first_event_with_header_wins(self):
        events = [
            event_with(None),
            event_with({"Content-Type": "application/json"}),
            event_with({"Traceparent": [traceparent()]}),
        ]
        assert trace_id_from_events(events) == TRACE_ID

    def test_same_trace_id_repeated_is_fine(self):
        events = [
            event_with({"traceparent": traceparent(span_id="00f067aa0ba902b7")}),
            event_with({"traceparent": traceparent(span_id="b7ad6b7169203331")}),
        ]
        assert trace_id_from_events(events) == TRACE_ID

    def test_no_header_is_fatal(self):
        with pytest.raises(NoTraceIDError, match="2 captured event"):
            trace_id_from_events([event_with({}), event_with(None)])

    def test_no_events_is_fatal(self):
        with pytest.raises(NoTraceIDError):
            trace_id_from_events([])

    def test_multiple_trace_ids_are_fatal(self):
        events = [
            event_with({"traceparent": traceparent(TRACE_ID)}),
            event_with({"traceparent": traceparent(OTHER_TRACE_ID)}),
        ]
        with pytest.raises(MultipleTraceIDsError) as excinfo:
            trace_id_from_events(events)
        assert excinfo.value.trace_ids == [TRACE_ID, OTHER_TRACE_ID]
        assert isinstance(excinfo.value, TestSetupError)
