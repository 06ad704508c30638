"""
Exception logging helpers for the proxy pipeline.

Hook and transport failures can be arbitrary user exceptions, including
exception groups raised from async hooks. These helpers never raise.
"""

import logging


def _safe_str(obj) -> str:
    """Convert an object to string, falling back when __str__ or __repr__ fail."""
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception message, including the members of exception groups.

    Args:
        exception: The exception to format

    Returns:
        A single-line description of the exception
    """
    if exception is None:
        return "None"

    message = _safe_str(exception)
    members = _sub_exceptions(exception)
    if not members:
        return message

    parts = [f"{type(sub).__name__}: {_safe_str(sub)}" for sub in members]
    return f"{message} (Sub-exceptions: {'; '.join(parts)})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, one record per exception group member.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g. "[Transport]", "[Registry]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        members = _sub_exceptions(exception)
        if not members:
            logger.log(
                level,
                f"{prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{prefix} Exception with {len(members)} sub-exceptions: {_safe_str(exception)}",
        )
        for i, sub in enumerate(members):
            logger.log(
                level,
                f"{prefix} Sub-exception {i + 1}: {type(sub).__name__}: {_safe_str(sub)}",
                exc_info=sub,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception logging failed")
        except Exception:
            # Nothing left to report to
            pass
