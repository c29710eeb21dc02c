"""Logging setup for the tooling entry points.

Each CLI calls ``configure_logging`` once at startup. Library modules only
ever do ``logger = logging.getLogger(__name__)`` and log with ``extra=``.

Example:
    >>> configure_logging(tool_name="vault_mode", log_level="INFO", stream=sys.stderr)
    >>> log_with_context(logger, "INFO", "Migration stage completed", stage="backed_up")
"""

import logging
import sys
from typing import TextIO

from libs.common.logging.context import get_operation_id
from libs.common.logging.formatter import JSONFormatter


def _parse_level(level: str) -> int:
    numeric = logging.getLevelNamesMapping().get(level.upper())
    if numeric is None:
        raise ValueError(f"Invalid log level: {level}")
    return numeric


class OperationIDFilter(logging.Filter):
    """Attach the active operation ID (or None) to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = get_operation_id()
        return True


def configure_logging(
    tool_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Install one JSON handler on the root logger, replacing any others.

    Args:
        tool_name: Stamped on every line as ``tool``
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        include_context: Emit the ``context`` object
        stream: Destination; CLIs pass sys.stderr so stdout carries only
            human-readable output. Default: sys.stdout

    Raises:
        ValueError: Unknown log level
    """
    level = _parse_level(log_level)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter(tool_name=tool_name, include_context=include_context))
    handler.addFilter(OperationIDFilter())

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    return root


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log ``message`` with ``context_fields`` nested under "context"."""
    logger.log(_parse_level(level), message, extra={"context": context_fields})
