"""
Logging Configuration for sepipe.

Provides the debug trace logger used to follow builder, compiler and
substitution activity. Output goes to stderr and, when SEPIPE_DEBUG_LOG
names a file, to that file as well.
"""

import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

DEBUG_TRACE_LOGGER_NAME = "sepipe.debug_trace"

_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Attribute on the trace logger listing the handlers this module installed
_TRACE_HANDLERS_ATTR = "_sepipe_trace_handlers"


def _get_log_path() -> Optional[Path]:
    """Get the debug log file path from SEPIPE_DEBUG_LOG, if set."""
    log_file = os.getenv("SEPIPE_DEBUG_LOG")
    if not log_file:
        return None
    return Path(log_file)


def _create_file_handler(log_path: Path) -> Optional[logging.FileHandler]:
    """
    Create a file handler for the given log file.

    Args:
        log_path: Path of the log file; parent directories are created

    Returns:
        Configured FileHandler, or None if the file cannot be opened
    """
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode='a', encoding='utf-8')
    except OSError:
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    return handler


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit.

    ::: This is-in-layer Infrastructure-Layer.
    ::: This is a handler.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    def emit(self, record):
        super().emit(record)
        self.flush()


def _create_stderr_handler() -> logging.StreamHandler:
    """Create a stderr handler for console output with auto-flush."""
    handler = FlushingStreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    return handler


def get_debug_trace_logger() -> logging.Logger:
    """
    Get the debug trace logger.

    The logger is configured once and does not propagate to the root
    logger, so enabling it never changes the host application's logging.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(DEBUG_TRACE_LOGGER_NAME)

    # Only configure once; handlers attached by others do not count
    if not hasattr(logger, _TRACE_HANDLERS_ATTR):
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        handlers: List[logging.Handler] = []
        log_path = _get_log_path()
        if log_path is not None:
            file_handler = _create_file_handler(log_path)
            if file_handler:
                handlers.append(file_handler)
        handlers.append(_create_stderr_handler())

        for handler in handlers:
            logger.addHandler(handler)
        setattr(logger, _TRACE_HANDLERS_ATTR, handlers)

    return logger


def get_trace_handlers() -> List[logging.Handler]:
    """Handlers installed by get_debug_trace_logger(), empty if not configured."""
    logger = logging.getLogger(DEBUG_TRACE_LOGGER_NAME)
    return list(getattr(logger, _TRACE_HANDLERS_ATTR, []))


def reset_debug_trace_logger() -> None:
    """Remove and close the trace handlers so the next call reconfigures."""
    logger = logging.getLogger(DEBUG_TRACE_LOGGER_NAME)
    for handler in getattr(logger, _TRACE_HANDLERS_ATTR, []):
        logger.removeHandler(handler)
        handler.close()
    if hasattr(logger, _TRACE_HANDLERS_ATTR):
        delattr(logger, _TRACE_HANDLERS_ATTR)


def configure_logger_for_debug_trace(logger_name: str) -> logging.Logger:
    """
    Configure a logger to also write to the debug trace handlers.

    Args:
        logger_name: Name of the logger to configure (e.g., "sepipe.dsl")

    Returns:
        Configured logger instance
    """
    get_debug_trace_logger()
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)
    for handler in get_trace_handlers():
        if handler not in logger.handlers:
            logger.addHandler(handler)
    return logger


def suppress_stderr_logging(logger_name: str = DEBUG_TRACE_LOGGER_NAME) -> None:
    """Silence stderr output of a trace logger; file output continues."""
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers:
        if isinstance(handler, FlushingStreamHandler):
            handler.setLevel(logging.CRITICAL + 1)


def restore_stderr_logging(logger_name: str = DEBUG_TRACE_LOGGER_NAME) -> None:
    """Undo suppress_stderr_logging()."""
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers:
        if isinstance(handler, FlushingStreamHandler):
            handler.setLevel(logging.DEBUG)
