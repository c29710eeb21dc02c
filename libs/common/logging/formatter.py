"""Single-line JSON rendering of log records.

A line looks like:

    {"timestamp": "2026-03-01T12:00:00.123Z", "level": "INFO",
     "tool": "vault_mode", "operation_id": "5f0c...", "logger": "libs.vault_mode.backup",
     "message": "Snapshot created",
     "context": {"snapshot_id": "20260301T120000123456Z-1a2b3c4d", "entry_count": 12}}

Context comes from an explicit ``extra={"context": {...}}`` dict when one is
given, otherwise from every plain ``extra=`` field. Both the message and the
context are passed through the secret sanitizer.
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

from libs.common.log_sanitizer import sanitize_dict, sanitize_text

# Attribute names present on every LogRecord; anything else arrived via extra=
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "operation_id",
    "context",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """Render log records as JSON objects, one per line.

    Args:
        tool_name: Name stamped on every line (e.g., "vault_mode")
        include_context: Emit the ``context`` object
    """

    def __init__(self, tool_name: str, include_context: bool = True, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.tool_name = tool_name
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "tool": self.tool_name,
            "operation_id": getattr(record, "operation_id", None),
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
        }

        context = self._context(record) if self.include_context else None
        if context:
            entry["context"] = sanitize_dict(context)

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": sanitize_text(str(exc_value)) if exc_value else None,
                "traceback": sanitize_text(
                    "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
                ),
            }

        return json.dumps(entry, default=str)

    @staticmethod
    def _context(record: logging.LogRecord) -> dict[str, Any]:
        explicit = getattr(record, "context", None)
        if isinstance(explicit, dict) and explicit:
            return dict(explicit)
        return {
            key: value for key, value in vars(record).items() if key not in _RECORD_ATTRIBUTES
        }
