"""Verifier configuration with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

ENV_PREFIX = "TRACE_CONFORMANCE_"


@dataclass(frozen=True)
class VerifierConfig:
    """Endpoints and timing for one verification flow. Times are in seconds."""

    zipkin_url: str = "http://localhost:9411"
    recordevents_url: str = "http://localhost:8081"
    trace_timeout: float = 300.0
    event_timeout: float = 60.0
    poll_interval: float = 1.0
    request_timeout: float = 10.0

    def validate(self) -> None:
        for name in ("trace_timeout", "event_timeout", "poll_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> VerifierConfig:
        """Build a config from defaults overridden by TRACE_CONFORMANCE_* variables."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.type in ("float", float):
                try:
                    overrides[f.name] = float(raw)
                except ValueError as exc:
                    raise ValueError(f"{ENV_PREFIX}{f.name.upper()}={raw!r} is not a number") from exc
            else:
                overrides[f.name] = raw
        config = replace(cls(), **overrides)
        config.validate()
        return config
