"""Structured logging for telescope-preview.

Thin layer over the standard :mod:`logging` package that lets call sites
attach key-value data to a record instead of formatting it into the message:

    logger = get_logger(__name__)
    logger.info("Saved image", remaining=3, path="/home/me/Desktop/x.tiff")

Two output formats are available:

- ``StructuredFormatter`` (default): ``<time> - <name> - <level> - <msg> | k=v``
- ``JSONFormatter``: one JSON object per line, structured keys at top level

Ambient fields (the device being captured from, for example) can be attached
to every record emitted inside a block with :class:`LogContext`:

    with LogContext(device_id=0):
        logger.info("Streaming reconfigured", exposure_ms=500.0)

All records are routed to the ``telescope_preview`` logger, which does not
propagate to the root logger. Output goes to stderr unless another stream is
configured, keeping stdout free for the operator shell.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any, cast

ROOT_LOGGER_NAME = "telescope_preview"

_DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Fields attached by enclosing LogContext blocks
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "telescope_preview_log_context", default={}
)


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept structured keyword arguments.

    Any keyword argument that the standard ``Logger`` does not understand is
    collected into ``record.structured_data`` together with the fields of the
    active :class:`LogContext`. Explicit keywords win over context fields.

    Example:
        >>> logger = get_logger("telescope_preview.devices")
        >>> logger.warning("Slow frame", duration_ms=2400.0)
    """

    def _emit(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...],
        exc_info: Any,
        stack_info: bool,
        stacklevel: int,
        extra: dict[str, Any] | None,
        fields: dict[str, Any],
    ) -> None:
        if not self.isEnabledFor(level):
            return
        self._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            # +1 for this helper so records point at the real caller
            stacklevel=stacklevel + 1,
            **fields,
        )

    def debug(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at DEBUG with optional structured fields."""
        self._emit(
            logging.DEBUG, msg, args, exc_info, stack_info, stacklevel + 1, extra, kwargs
        )

    def info(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at INFO with optional structured fields."""
        self._emit(
            logging.INFO, msg, args, exc_info, stack_info, stacklevel + 1, extra, kwargs
        )

    def warning(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at WARNING with optional structured fields."""
        self._emit(
            logging.WARNING,
            msg,
            args,
            exc_info,
            stack_info,
            stacklevel + 1,
            extra,
            kwargs,
        )

    def error(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at ERROR with optional structured fields."""
        self._emit(
            logging.ERROR, msg, args, exc_info, stack_info, stacklevel + 1, extra, kwargs
        )

    def critical(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at CRITICAL with optional structured fields."""
        self._emit(
            logging.CRITICAL,
            msg,
            args,
            exc_info,
            stack_info,
            stacklevel + 1,
            extra,
            kwargs,
        )

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Merge context and keyword fields, then defer to ``Logger._log``.

        ``Logger.exception`` and ``Logger.log`` reach this method directly,
        so structured fields work with them as well.
        """
        extra = dict(extra) if extra else {}
        extra["structured_data"] = {**_log_context.get(), **kwargs}
        super()._log(
            level,
            msg,
            args if args is not None else (),
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


def _format_value(value: Any) -> str:
    """Render one structured value for the ``k=v`` text format.

    ``None`` becomes ``null``, strings containing spaces are quoted, dicts and
    lists are JSON encoded and everything else goes through ``str()``.

    Example:
        >>> _format_value("Saving 3 frames")
        '"Saving 3 frames"'
        >>> _format_value({"remaining": 2})
        '{"remaining": 2}'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"' if " " in value else value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter appending structured fields as ``k=v`` pairs."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Base format string. Defaults to
                ``"%(asctime)s - %(name)s - %(levelname)s - %(message)s"``.
            datefmt: ``asctime`` format, standard library default if None.
            include_structured: Append `` | k=v ...`` when a record carries
                structured data. Set False for message-only output.
        """
        super().__init__(fmt or _DEFAULT_FORMAT, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, appending structured fields when present."""
        base = super().format(record)
        structured = getattr(record, "structured_data", None)
        if not self.include_structured or not structured:
            return base
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record (NDJSON).

    Keys: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``, ``message``,
    ``exception`` when exception info is attached, plus every structured
    field. Values that JSON cannot encode are stringified.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize the record as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "structured_data", None) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LogContext:
    """Attach fields to every record logged inside a ``with`` block.

    Backed by a :class:`contextvars.ContextVar`, so each thread (and each
    asyncio task) sees its own stack of contexts. Nested blocks merge, inner
    values override outer ones, and leaving a block restores the previous
    fields even when an exception propagates.

    Example:
        >>> with LogContext(device_id=0):
        ...     with LogContext(mode="saving"):
        ...         logger.info("Frame written")  # device_id=0 mode=saving
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *exc: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    def __repr__(self) -> str:
        return f"LogContext({self._fields!r})"


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Install the handler and formatter on the ``telescope_preview`` logger.

    Called once by the CLI at startup; :func:`get_logger` calls it lazily
    with defaults when nothing has been configured yet. Later calls are
    ignored unless ``force`` is set, in which case existing handlers are
    removed first.

    Args:
        level: Minimum level, as a number or a name such as ``"DEBUG"``.
        json_format: Emit NDJSON instead of the ``k=v`` text format.
        stream: Destination stream, ``sys.stderr`` when None.
        include_structured: Append structured fields in text format.
        force: Replace an existing configuration.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Configure without locking; the caller holds ``_config_lock``."""
    global _configured
    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Drop all package handlers; the caller holds ``_config_lock``."""
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    _configured = False


def reset_logging() -> None:
    """Return logging to the unconfigured state. Intended for tests."""
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return the structured logger for ``name`` (normally ``__name__``).

    Configures logging with defaults on first use. Loggers created before
    configuration installed :class:`StructuredLogger` as the logger class are
    still plain ``Logger`` instances, so modules obtain their logger through
    this function at import time, after the logger class is set.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Connected", device_id=0, width=1280, height=960)
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()
    return cast(StructuredLogger, logging.getLogger(name))
