"""Logging configuration for firecraft.

Three rotating log files sit side by side: firecraft.log for the engine,
firecraft-perf.log for the latency of every adapter call and pipeline stage,
and firecraft-audit.log, a human-readable mirror of the audit ledger.

Environment Variables:
    FIRECRAFT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    FIRECRAFT_LOG_FILE: Path to log file (default: ~/.firecraft/firecraft.log)
    FIRECRAFT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    FIRECRAFT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from firewall_reconciler.utils.logging_config import setup_logging, timed_section

    setup_logging()

    async with timed_section("push_candidate", device_id="fw-edge-01", diff_id=diff.diff_id):
        await adapter.push_candidate(...)
"""
import functools
import inspect
import logging
import os
import time
from contextlib import asynccontextmanager, contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Loggers with their own files
perf_logger = logging.getLogger("firecraft.perf")
audit_logger = logging.getLogger("firecraft.audit")
main_logger = logging.getLogger("firecraft")

PACKAGE_LOGGER = "firewall_reconciler"

_configured = False


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("FIRECRAFT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".firecraft" / "firecraft.log"
    return Path(os.environ.get("FIRECRAFT_LOG_FILE", str(default_path)))


def _rotating_handler(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    max_size_mb = int(os.environ.get("FIRECRAFT_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("FIRECRAFT_LOG_BACKUPS", "5"))
    handler = RotatingFileHandler(
        path,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging(console: bool = True, level: Optional[int] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects FIRECRAFT_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance and audit logs in separate files next to the main log

    Calling it again is a no-op.

    Args:
        console: Also log to stderr
        level: Console level, overriding FIRECRAFT_LOG_LEVEL
    """
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_log_level()
    log_file = get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    audit_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | AUDIT | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = [_rotating_handler(log_file, main_format)]
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(main_format)
        handlers.append(console_handler)

    # Both the firecraft tree and the package's module loggers
    for name in ("firecraft", PACKAGE_LOGGER):
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
        for handler in handlers:
            logger.addHandler(handler)

    perf_log_file = log_file.parent / "firecraft-perf.log"
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(_rotating_handler(perf_log_file, perf_format))

    audit_log_file = log_file.parent / "firecraft-audit.log"
    audit_logger.setLevel(logging.INFO)
    audit_logger.addHandler(_rotating_handler(audit_log_file, audit_format))

    _configured = True
    main_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")
    perf_logger.info(f"Performance logging to: {perf_log_file}")


def _perf_line(operation: str, device_id: Optional[str], started: float, outcome: str, extra: dict) -> str:
    elapsed = (time.perf_counter() - started) * 1000  # ms
    msg = f"{operation:20s} | {device_id or 'N/A':15s} | {elapsed:8.2f}ms | {outcome}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    return msg


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator to log execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "backup", "drift_run")
        device_id: Optional device identifier (also taken from a device_id
            keyword or first positional argument after self when it is a str)
    """
    def _device(args: tuple, kwargs: dict) -> Optional[str]:
        if device_id is not None:
            return device_id
        if "device_id" in kwargs:
            return kwargs["device_id"]
        if len(args) > 1 and isinstance(args[1], str):
            return args[1]
        return None

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            dev_id = _device(args, kwargs)
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                perf_logger.info(_perf_line(operation, dev_id, start, "OK", {}))
                return result
            except Exception as e:
                perf_logger.warning(_perf_line(operation, dev_id, start, f"FAIL: {e}", {}))
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            dev_id = _device(args, kwargs)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                perf_logger.info(_perf_line(operation, dev_id, start, "OK", {}))
                return result
            except Exception as e:
                perf_logger.warning(_perf_line(operation, dev_id, start, f"FAIL: {e}", {}))
                raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("commit", device_id="fw-edge-01", attempt="att-1"):
            await adapter.commit(...)
    """
    start = time.perf_counter()
    try:
        yield
        perf_logger.info(_perf_line(operation, device_id, start, "OK", extra))
    except BaseException as e:
        perf_logger.warning(_perf_line(operation, device_id, start, f"FAIL: {e!r}", extra))
        raise


@contextmanager
def timed_section_sync(operation: str, device_id: Optional[str] = None, **extra):
    """Sync context manager for timing code sections."""
    start = time.perf_counter()
    try:
        yield
        perf_logger.info(_perf_line(operation, device_id, start, "OK", extra))
    except Exception as e:
        perf_logger.warning(_perf_line(operation, device_id, start, f"FAIL: {e}", extra))
        raise
