"""
Exception logging that never raises, including for exception groups raised
by task groups inside the ASGI stack.
"""

import logging


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back when __str__ or __repr__ fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, and each member of an exception group
    separately.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    safe_prefix = _safe_str(prefix) if prefix is not None else ""
    try:
        sub_exceptions = _sub_exceptions(exception)
        if not sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
            f"{_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            logger.log(
                level,
                f"{safe_prefix} Sub-exception {i + 1}: "
                f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        # Logging must never take the request down with it
        try:
            logger.log(logging.ERROR, f"{safe_prefix} Exception (logging failed)")
        except Exception:
            pass
