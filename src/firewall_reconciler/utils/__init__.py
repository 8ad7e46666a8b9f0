"""Utility modules for logging, timing and retry handling."""
from .logging_config import (
    audit_logger,
    perf_logger,
    setup_logging,
    timed,
    timed_section,
    timed_section_sync,
)
from .retry import RetryPolicy, with_timeout

__all__ = [
    "audit_logger",
    "perf_logger",
    "setup_logging",
    "timed",
    "timed_section",
    "timed_section_sync",
    "RetryPolicy",
    "with_timeout",
]
