"""Structured logging configuration for skillwriter.

Provides JSON-formatted logs for machine consumption and human-readable text
for terminals. A contextvars-based section id is automatically included in
every log record emitted while a section runner is active, so interleaved
output from concurrent sections stays attributable.
"""

import contextvars
import json
import logging
import re
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Optional


# Set by the section runner; read by the formatters and filter.
section_var: contextvars.ContextVar[str] = contextvars.ContextVar("section", default="")


class _JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line.

    Merges any ``extra`` fields from the record into the top-level object
    so callers can do ``logger.info("msg", extra={"model": "sonnet"})`` and
    get ``{"model": "sonnet"}`` alongside the standard fields.
    """

    # Keys that belong to the LogRecord itself and should not leak into output.
    _RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self._RESERVED and key not in payload:
                payload[key] = value

        if not payload.get("section"):
            payload.pop("section", None)

        return json.dumps(payload, default=str)


class _SectionFilter(logging.Filter):
    """Attach the active section id to every record as ``record.section``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "section", ""):
            record.section = section_var.get("")
        return True


class _TextFormatter(logging.Formatter):
    """Human-readable formatter that prefixes the section when one is active."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        section = getattr(record, "section", "")
        return f"[{section}] {text}" if section else text


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------

# Backend CLIs echo environment problems to stderr, which we log verbatim.
_SECRET_PATTERNS = [
    re.compile(r'\bsk-[a-zA-Z0-9_\-]{20,}'),            # OpenAI / Anthropic keys
    re.compile(r'\bAIza[0-9A-Za-z_\-]{30,}'),             # Google API keys
    re.compile(r'\bkey-[a-zA-Z0-9]{20,}\b'),              # Generic API keys
    re.compile(r'(?i)(bearer\s+)[a-zA-Z0-9._\-]{20,}'),   # Bearer tokens
    re.compile(                                             # key=value secrets
        r'(?i)((?:api_key|secret|password|token|authorization)[=:]\s*)[^\s,\'"]{8,}'
    ),
]

_REDACTED = "***REDACTED***"


class _SecretFilter(logging.Filter):
    """Redact potential secrets from log messages and exception text."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact(str(record.msg))
        if isinstance(record.args, Mapping):
            record.args = {k: self._redact_arg(v) for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(self._redact_arg(a) for a in record.args)
        if record.exc_text:
            record.exc_text = self._redact(record.exc_text)
        return True

    def _redact_arg(self, value):
        return self._redact(value) if isinstance(value, str) else value

    @staticmethod
    def _redact(text: str) -> str:
        for pattern in _SECRET_PATTERNS:
            text = pattern.sub(
                lambda m: m.group(1) + _REDACTED if m.lastindex else _REDACTED,
                text,
            )
        return text


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure application-wide logging.

    Args:
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL. Defaults to INFO.
        log_format: ``"json"`` for structured output, ``"text"`` for human-readable.
                    Defaults to ``"text"``.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "text").lower()

    # stdout carries the generated document; logs go to stderr.
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(_SecretFilter())
    handler.addFilter(_SectionFilter())

    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            _TextFormatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Reduce noise from the event loop implementation.
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured", extra={"level": level, "format": fmt})
