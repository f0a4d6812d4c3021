"""Clients for the tracing backend and the recording sink."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Protocol

import httpx

from trace_conformance.correlation import CapturedEvent
from trace_conformance.errors import BackendError
from trace_conformance.parser import ObservedSpan, parse_zipkin_trace

logger = logging.getLogger(__name__)


class TracingBackend(Protocol):
    def get_trace(self, trace_id: str, timeout: Optional[float] = None) -> List[ObservedSpan]:
        """Return every span currently stored for ``trace_id`` (possibly none).

        ``timeout`` caps the time spent on this call, in seconds.
        """
        ...


class RecordingSink(Protocol):
    def list_events(self, timeout: Optional[float] = None) -> List[CapturedEvent]:
        """Return every event the sink currently holds, within ``timeout`` seconds."""
        ...


class _HTTPClient:
    """Owns an httpx.Client; closes it only when it created it."""

    def __init__(
        self, base_url: str, timeout: float, client: Optional[httpx.Client] = None
    ) -> None:
        self._owns_client = client is None
        self._timeout = timeout
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def _get_json(
        self, path: str, missing_ok: bool = False, timeout: Optional[float] = None
    ) -> Any:
        if timeout is not None and timeout <= 0:
            raise BackendError(f"GET {path} skipped: no time left")
        request_timeout = self._timeout if timeout is None else min(self._timeout, timeout)
        try:
            response = self._client.get(path, timeout=request_timeout)
        except httpx.HTTPError as exc:
            raise BackendError(f"GET {path} failed: {exc}") from exc
        if missing_ok and response.status_code == 404:
            return None
        try:
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise BackendError(f"GET {path} returned {response.status_code}") from exc
        except ValueError as exc:
            raise BackendError(f"GET {path} returned invalid JSON: {exc}") from exc

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ZipkinBackend(_HTTPClient):
    """Reads traces from the Zipkin v2 HTTP API."""

    def __init__(
        self,
        base_url: str = "http://localhost:9411",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(base_url, timeout, client)

    def get_trace(self, trace_id: str, timeout: Optional[float] = None) -> List[ObservedSpan]:
        # 404 means the trace has not been ingested yet
        data = self._get_json(f"/api/v2/trace/{trace_id}", missing_ok=True, timeout=timeout)
        if data is None:
            return []
        try:
            return parse_zipkin_trace(data)
        except ValueError as exc:
            raise BackendError(f"trace {trace_id}: {exc}") from exc


def _event_from_info(info: dict[str, Any]) -> CapturedEvent:
    return CapturedEvent(
        event=info.get("event") or {},
        headers=info.get("httpHeaders"),
        sequence=int(info.get("sequence") or 0),
        error=info.get("error") or "",
        observer=info.get("observer") or "",
        time=info.get("time") or "",
    )


class RecordEventsSink(_HTTPClient):
    """Reads captured events from a record-events pod over HTTP.

    ``GET /minmax`` reports the range of stored sequence numbers and
    ``GET /entry/{seq}`` returns one stored event info record. A
    ``list_events`` timeout is a budget shared by all of those requests.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8081",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(base_url, timeout, client)
        self._clock = clock

    def list_events(self, timeout: Optional[float] = None) -> List[CapturedEvent]:
        end = None if timeout is None else self._clock() + timeout

        def remaining() -> Optional[float]:
            return None if end is None else end - self._clock()

        bounds = self._get_json("/minmax", timeout=remaining())
        if not isinstance(bounds, dict):
            raise BackendError(f"unexpected /minmax response: {bounds!r}")
        try:
            low, high = int(bounds["minAvail"]), int(bounds["maxSeen"])
        except (KeyError, TypeError, ValueError) as exc:
            raise BackendError(f"unexpected /minmax response: {bounds!r}") from exc

        events: List[CapturedEvent] = []
        for seq in range(max(low, 1), high + 1):
            info = self._get_json(f"/entry/{seq}", missing_ok=True, timeout=remaining())
            if info is None:
                # entry trimmed between the two calls
                logger.debug("record-events entry %d vanished", seq)
                continue
            if not isinstance(info, dict):
                raise BackendError(f"unexpected /entry/{seq} response: {info!r}")
            events.append(_event_from_info(info))
        return events
