"""Logging utilities for localtree.

This module provides a custom PREDICTION log level and a context manager for
enabling/disabling localtree logging with loguru.

Note:
    Importing this module removes loguru's default stderr handler (ID 0) to
    prevent duplicate output when ``enable_logging()`` adds its own handler.
    If your application configures loguru handlers *before* importing
    localtree, handler 0 may no longer be the default; in that case the
    removal is a no-op (the ``ValueError`` is suppressed). Configure loguru
    handlers *after* importing localtree, or re-add a stderr handler
    explicitly if needed.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

# Custom PREDICTION level (between INFO=20 and WARNING=30)
PREDICTION_LEVEL: Final[str] = "PREDICTION"
PREDICTION_LEVEL_NUMBER: Final[int] = 25


def _register_prediction_level() -> None:
    """Register the PREDICTION custom log level with loguru.

    Looks up the PREDICTION level and registers it when absent. If it already
    exists with a different numeric value a UserWarning is emitted, because
    loguru does not permit changing the numeric value of an existing level.
    """
    try:
        existing_level = logger.level(PREDICTION_LEVEL)
    except ValueError:
        logger.level(PREDICTION_LEVEL, no=PREDICTION_LEVEL_NUMBER, icon="🌳")
    else:
        if existing_level.no != PREDICTION_LEVEL_NUMBER:
            msg = (
                f"PREDICTION level already registered with numeric value {existing_level.no},"
                f" expected {PREDICTION_LEVEL_NUMBER}"
            )
            warnings.warn(msg, stacklevel=2)


_register_prediction_level()

type LogLevel = Literal[
    "TRACE",
    "DEBUG",
    "INFO",
    "PREDICTION",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

type LogFormat = Literal["short", "full"]


class LoggingHandle:
    """Handle for managing localtree logging lifecycle.

    Stores the handler ID from logger.add() and provides cleanup via disable()
    or automatic cleanup through the context manager protocol.

    Examples:
        >>> with enable_logging():  # doctest: +SKIP
        ...     model.predict({"000002": 1.0})

        >>> handle = enable_logging(level="DEBUG")  # doctest: +SKIP
        >>> handle.disable()  # doctest: +SKIP
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        """Initialize the logging handle.

        Args:
            handler_id (int): The loguru handler ID from logger.add().
        """
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove the handler associated with this logging handle.

        When this is the last active handle, ``logger.disable("localtree")``
        is called to suppress localtree log messages again. Calling disable()
        twice is a no-op.
        """
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        """Enter context manager.

        Returns:
            LoggingHandle: This handle instance.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and disable logging.

        Args:
            exc_type (type[BaseException] | None): The exception type, if raised.
            exc_val (BaseException | None): The exception instance, if raised.
            exc_tb (TracebackType | None): The traceback, if raised.
        """
        self.disable()

    @classmethod
    def get_active_handle_count(cls) -> int:
        """Return the number of currently active logging handles.

        Returns:
            int: Count of active handles that have not been disabled.
        """
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = PREDICTION_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Enable localtree logging on stderr.

    Use this to observe tree loading and predictions. Each call returns an
    independent handle that manages its own handler; use the handle's
    disable() method or the context manager protocol to clean up.

    Records emitted, with their structured fields:

    - DEBUG "Node graph built" (`nodes`) after a tree description is parsed.
    - DEBUG "Ignoring input keys with no matching field" (`keys`) when a row
      carries keys that name no field.
    - INFO "Tree loaded" (`fields`, `nodes`, `leaves`, `depth`) once per
      loaded model.
    - PREDICTION "Prediction made" (`node_id`, `prediction`, `confidence`,
      `path_length`) once per predicted row.
    - WARNING "Input row rejected" (`invalid_fields`) before `InputTypeError`
      is raised.

    Args:
        level (LogLevel): Minimum log level to display. Defaults to
            "PREDICTION", which surfaces one line per prediction. Lower to
            "DEBUG" to also see tree construction details and ignored input
            keys.
        log_format (LogFormat): "short" (default) shows the function name;
            "full" shows module:function:line.

    Returns:
        LoggingHandle: Independent handle for managing the logging handler.
    """
    logger.enable(PACKAGE_NAME)

    if log_format == "short":
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <10}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        )
    else:  # "full"
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <10}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level> {extra}"
        )

    handler_id = logger.add(
        sys.stderr,
        level=level,
        filter=_is_localtree_record,
        format=format_str,
    )

    return LoggingHandle(handler_id)


def _is_localtree_record(record: Record) -> bool:
    """Filter to pass all localtree module records.

    Args:
        record (Record): The loguru Record object to filter.

    Returns:
        bool: True if the record is from the localtree package, False otherwise.
    """
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
