"""
Core Module Package.

This package contains the infrastructure pieces that the
deal engine and the orchestrator depend on.

Components:
- clock: Testable UTC clock
- concurrency: Fixed-width batch fan-out
- exceptions: Process-level exception hierarchy
- constants: Byte sizes, defaults and format_bytes
"""

from .clock import ClockProtocol, SystemClock, MockClock
from .concurrency import BatchOutcome, run_in_batches
from .exceptions import (
    Severity,
    ProbeException,
    ConfigurationError,
    StartupError,
    ShutdownError,
)
from .constants import format_bytes


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "BatchOutcome",
    "run_in_batches",
    "Severity",
    "ProbeException",
    "ConfigurationError",
    "StartupError",
    "ShutdownError",
    "format_bytes",
]
