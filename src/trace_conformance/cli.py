"""CLI entry point for trace-conformance."""

from __future__ import annotations

import argparse
import logging
import sys

from trace_conformance import __version__
from trace_conformance.backends import ZipkinBackend
from trace_conformance.config import VerifierConfig
from trace_conformance.diagnostics import render_expectation, render_forest, render_match
from trace_conformance.errors import (
    BackendError,
    ConformanceFailure,
    ExpectationError,
    MalformedTraceError,
)
from trace_conformance.expectation import load_expectation
from trace_conformance.matcher import match_subtree
from trace_conformance.parser import parse_file
from trace_conformance.tree import build_forest
from trace_conformance.verify import verify_trace


def _build_parser(defaults: VerifierConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trace-conformance",
        description="Check that a distributed trace contains an expected span tree",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "source",
        nargs="?",
        help="Saved trace file (Zipkin JSON or OTLP NDJSON, optionally .gz), or - for stdin",
    )
    parser.add_argument(
        "-e",
        "--expect",
        default=None,
        help="Expected span tree as a JSON file",
    )
    parser.add_argument(
        "--trace-id",
        default=None,
        help="Poll the tracing backend for this trace instead of reading a file",
    )
    parser.add_argument(
        "--zipkin-url",
        default=defaults.zipkin_url,
        help=f"Zipkin base URL (default: {defaults.zipkin_url})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=defaults.trace_timeout,
        help=f"Seconds to keep polling (default: {defaults.trace_timeout:g})",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=defaults.poll_interval,
        help=f"Seconds between polls (default: {defaults.poll_interval:g})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every poll attempt",
    )
    return parser


def _check_file(source: str, expect: str | None) -> int:
    spans = parse_file(source)
    forest = build_forest(spans)
    if expect is None:
        print(render_forest(forest))
        return 0

    expected = load_expectation(expect)
    result = match_subtree(expected, forest, verbose=True)
    if result.matched:
        print(render_match(result))
        return 0
    print("No matching subtree.", file=sys.stderr)
    print("want:\n" + render_expectation(expected), file=sys.stderr)
    print("got:\n" + render_forest(forest), file=sys.stderr)
    print("match attempts:\n" + "\n".join(result.explanation), file=sys.stderr)
    return 1


def _check_live(args: argparse.Namespace, defaults: VerifierConfig) -> int:
    config = VerifierConfig(
        zipkin_url=args.zipkin_url,
        recordevents_url=defaults.recordevents_url,
        trace_timeout=args.timeout,
        event_timeout=defaults.event_timeout,
        poll_interval=args.interval,
        request_timeout=defaults.request_timeout,
    )
    config.validate()
    expected = load_expectation(args.expect)
    with ZipkinBackend(config.zipkin_url, timeout=config.request_timeout) as backend:
        report = verify_trace(backend, args.trace_id.lower(), expected, config)
    print(render_match(report.match))
    return 0


def main() -> int:
    """CLI entry point. Returns 0 on match, 1 on no match, 2 on error."""
    try:
        defaults = VerifierConfig.from_env()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    parser = _build_parser(defaults)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.trace_id is None and args.source is None:
        parser.error("either a trace file or --trace-id is required")
    if args.trace_id is not None and args.expect is None:
        parser.error("--trace-id requires --expect")

    try:
        if args.trace_id is not None:
            return _check_live(args, defaults)
        return _check_file(args.source, args.expect)
    except ConformanceFailure as exc:
        # the full report was already logged at ERROR
        print(f"FAIL: no matching subtree in trace {exc.report.trace_id}", file=sys.stderr)
        return 1
    except (ExpectationError, MalformedTraceError, BackendError, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
