"""Operation ID generation and context propagation for tooling runs.

Every CLI invocation (a status check, a mode switch, a restore) gets one
operation ID. All log lines emitted while the operation runs carry it, so a
multi-stage migration can be reconstructed from the logs of a single run.

Example:
    >>> from libs.common.logging.context import generate_operation_id, get_operation_id
    >>> operation_id = generate_operation_id()
    >>> set_operation_id(operation_id)
    >>> get_operation_id() == operation_id
    True
"""

import contextvars
import uuid
from types import TracebackType

_operation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation_id", default=None
)


def generate_operation_id() -> str:
    """Generate a new unique operation ID (UUID v4 string)."""
    return str(uuid.uuid4())


def get_operation_id() -> str | None:
    """Get the current operation ID from context, or None if unset."""
    return _operation_id_var.get()


def set_operation_id(operation_id: str) -> None:
    """Set the operation ID for the current context.

    Raises:
        ValueError: If operation_id is empty
    """
    if not operation_id:
        raise ValueError("Operation ID cannot be empty")
    _operation_id_var.set(operation_id)


def clear_operation_id() -> None:
    """Clear the operation ID from the current context."""
    _operation_id_var.set(None)


class OperationContext:
    """Context manager for scoped operation ID management.

    Sets an operation ID for a block of code and restores the previous
    value when done.

    Example:
        >>> with OperationContext() as operation_id:
        ...     logger.info("Switching mode")  # carries operation_id
    """

    def __init__(self, operation_id: str | None = None) -> None:
        self.operation_id = operation_id or generate_operation_id()
        self.previous_operation_id: str | None = None

    def __enter__(self) -> str:
        self.previous_operation_id = get_operation_id()
        set_operation_id(self.operation_id)
        return self.operation_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.previous_operation_id is not None:
            set_operation_id(self.previous_operation_id)
        else:
            clear_operation_id()
