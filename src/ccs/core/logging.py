"""Structured logging for the settings engine (structlog).

Configures structlog once at process start so every module can do::

    import structlog
    logger = structlog.get_logger()
    logger.info("settings_written", directory="src/api", fields=["emojis.normal"])

Output is JSON by default (``CCS_LOG_JSON=true``) for machine consumption,
with a human-friendly console renderer available for development
(``CCS_LOG_JSON=false``).

Settings events carry paths and field names.  Before rendering:

* :class:`pathlib.PurePath` values become forward-slash strings, so Windows
  and POSIX logs read the same.
* :class:`~ccs.core.models.SettingField` members become their dotted names.

Both rules also apply inside list and tuple values (``fields=[...]``).
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, MutableMapping
from enum import Enum
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from ccs.core.settings import Settings

# Marks the handler this module installs on the root logger.
_HANDLER_NAME = "ccs"


def _plain(value: Any) -> Any:
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _settings_values_processor(
    _logger: Any,
    _method: str,
    event_dict: MutableMapping[str, Any],
) -> Mapping[str, Any]:
    """Render paths and field enums in the event as plain strings."""
    for k, v in event_dict.items():
        event_dict[k] = _plain(v)
    return event_dict


def configure_logging(
    settings: Settings | None = None,
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Set up structlog + stdlib integration.

    Parameters
    ----------
    settings:
        Source of ``log_level`` / ``log_json`` when the keyword arguments
        are not given.
    level:
        Root log level (``DEBUG``, ``INFO``, ``WARNING``, etc.).  Unknown
        names fall back to ``INFO``.
    json_output:
        If *True*, render as JSON lines.  If *False*, use coloured console
        output (dev mode).

    Calling it again replaces the handler from the previous call and leaves
    any other root handler in place.
    """
    if level is None:
        level = settings.log_level if settings is not None else "INFO"
    if json_output is None:
        json_output = settings.log_json if settings is not None else True
    log_level = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _settings_values_processor,
    ]

    if json_output:
        # Emoji settings stay readable in JSON output.
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if h.get_name() != _HANDLER_NAME]
    root.addHandler(handler)
    root.setLevel(log_level)
