"""Root logger configuration.

Modules log through ``logging.getLogger(__name__)``; this module only decides
where the records go and how structlog renders them (one JSON object per
line, or a plain console line).
"""

from __future__ import annotations

import logging
import sys
from typing import List

import structlog


def _pre_chain() -> List[object]:
    """Processors applied to records coming from the standard library."""
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def build_formatter(fmt: str = "json") -> structlog.stdlib.ProcessorFormatter:
    """Return a formatter rendering ``console`` lines or, for anything else, JSON."""
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def _handler_for(output: str) -> logging.Handler:
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    if output in ("stdout", ""):
        return logging.StreamHandler(sys.stdout)
    return logging.FileHandler(output, encoding="utf-8")


def configure_logging(level: str = "info", fmt: str = "json", output: str = "stdout") -> None:
    """Install a single structlog-rendered handler on the root logger.

    Unknown level names fall back to INFO. Uvicorn's loggers are made to
    propagate so that access and error logs share the same handler.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = _handler_for(output)
    handler.setFormatter(build_formatter(fmt))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True
