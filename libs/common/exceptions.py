"""
Exception hierarchy shared by the platform tooling.

Every custom exception raised by the tooling libraries inherits from
PlatformError so that entry points (CLIs, startup hooks) can catch one
base class and turn it into an exit code.

See libs/vault_mode/exceptions.py for the secret-store specific tree.
"""


class PlatformError(Exception):
    """
    Base exception for all platform tooling errors.

    Example:
        >>> try:
        ...     coordinator.migrate(...)
        ... except PlatformError as e:
        ...     logger.error(f"Tooling error: {e}")
    """

    pass

