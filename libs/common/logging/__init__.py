"""Centralized structured logging library.

This package provides structured JSON logging with operation ID support so
that every line emitted during one tooling run can be correlated.

Usage:
    # At CLI startup
    from libs.common.logging import configure_logging, OperationContext
    configure_logging(tool_name="vault_mode", log_level="INFO", stream=sys.stderr)

    with OperationContext():
        log_with_context(logger, "INFO", "Stage completed", stage="backed_up")
"""

from libs.common.logging.config import (
    OperationIDFilter,
    configure_logging,
    log_with_context,
)
from libs.common.logging.context import (
    OperationContext,
    clear_operation_id,
    generate_operation_id,
    get_operation_id,
    set_operation_id,
)
from libs.common.logging.formatter import JSONFormatter

__all__ = [
    # Configuration
    "configure_logging",
    "log_with_context",
    "OperationIDFilter",
    # Operation ID management
    "generate_operation_id",
    "get_operation_id",
    "set_operation_id",
    "clear_operation_id",
    "OperationContext",
    # Formatter (for advanced usage)
    "JSONFormatter",
]
