"""Logging for ``spending_guard``.

Engine modules obtain loggers with :func:`get_logger` and emit grep-friendly
``component:event key=value`` lines; they never add handlers. The process
entrypoint (the CLI, or whatever service hosts the scheduler) calls
:func:`configure_logging` once to route the ``spending_guard`` logger tree to
a stream. Until then the tree carries only a ``NullHandler``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "spending_guard"
LOG_LEVEL_ENV = "SPENDING_GUARD_LOG_LEVEL"

# Thread name included: the full pass and the fast path log from their own threads.
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s [%(threadName)s] %(message)s"

# Client libraries that log every HTTP request or SQL statement at INFO.
_CHATTY_LOGGERS = ("httpx", "openai", "sqlalchemy.engine")

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """Map an int, a level name or a numeric string to a logging level.

    ``None`` falls back to ``SPENDING_GUARD_LOG_LEVEL``; anything unrecognised
    resolves to ``INFO``.
    """

    candidate: int | str | None = level if level is not None else os.getenv(LOG_LEVEL_ENV)
    if isinstance(candidate, int):
        return candidate
    if candidate:
        text = candidate.strip().upper()
        if text.isdigit():
            return int(text)
        named = logging.getLevelName(text)
        if isinstance(named, int):
            return named
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach one ``StreamHandler`` to the package logger; later calls are no-ops.

    Parameters
    ----------
    level:
        Level for the package tree; see :func:`resolve_level`.
    fmt:
        Format string, default :data:`DEFAULT_FORMAT`.
    stream:
        Destination of the handler.

    Unless the resolved level is ``DEBUG``, the HTTP and SQL client loggers in
    ``_CHATTY_LOGGERS`` are raised to ``WARNING`` so a running scheduler does
    not log one line per AI request or query.
    """

    global _configured
    if _configured:
        return

    resolved = resolve_level(level)
    pkg = logging.getLogger(PACKAGE_LOGGER)
    for h in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    pkg.addHandler(handler)
    pkg.setLevel(resolved)
    pkg.propagate = False

    if resolved > logging.DEBUG:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """``logging.getLogger(name)``, after making sure the package tree is silent by default."""

    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["DEFAULT_FORMAT", "configure_logging", "get_logger", "resolve_level"]
