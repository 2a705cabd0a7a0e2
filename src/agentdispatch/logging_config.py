"""Structured logging configuration for agentdispatch.

Provides JSON or text logging on stderr. Configure via ``--log-level`` /
``--log-format`` or the ``AGENTDISPATCH_LOG_*`` variables read by AppSettings.

Records emitted for a single run carry ``run_id`` (passed through ``extra=``
by the dispatcher); every other record gets ``-`` so both formats can always
reference the field.
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger

JSON_FIELDS = ("asctime", "levelname", "name", "run_id", "message", "funcName", "lineno")
TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(run_id)s] %(message)s"


class RunContextFilter(logging.Filter):
    """Default the ``run_id`` attribute for records logged outside a run."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = "-"
        return True


def _formatter(fmt: str) -> logging.Formatter:
    if fmt.lower() == "json":
        return jsonlogger.JsonFormatter(fmt=" ".join(f"%({f})s" for f in JSON_FIELDS))
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")


def configure_logging(level: str = "WARNING", fmt: str = "text") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    root.handlers.clear()

    # stdout is reserved for reports and --json output
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(_formatter(fmt))
    root.addHandler(handler)
