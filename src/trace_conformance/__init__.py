"""Trace conformance verification for event-driven pipelines."""

__version__ = "0.1.0"
