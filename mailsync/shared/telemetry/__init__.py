"""Logging, OpenTelemetry setup and span helpers."""

from mailsync.shared.telemetry.logging import get_logger, setup_logging
from mailsync.shared.telemetry.telemetry import SyncTelemetry
from mailsync.shared.telemetry.tracing import (
    TracedOperation,
    add_span_attributes,
    traced,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "SyncTelemetry",
    "traced",
    "add_span_attributes",
    "TracedOperation",
]
