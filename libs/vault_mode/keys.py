"""Owner-only storage for the unseal key set.

The key file holds every key share and the initial root token produced by
the store's init. It is written atomically with mode 0o600 and never logged.
A file with group or world permission bits still loads (the operator may
need it to recover) but a warning is emitted and the validation report
flags it as a failure.
"""

from __future__ import annotations

import json
import logging
import stat
from pathlib import Path

from pydantic import ValidationError

from libs.common.file_utils import atomic_write_json
from libs.vault_mode.exceptions import KeyMaterialNotFoundError
from libs.vault_mode.types import UnsealKeySet

logger = logging.getLogger(__name__)

KEY_FILE_MODE = 0o600


class UnsealKeyStore:
    """Load and save the UnsealKeySet file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def permissions_ok(self) -> bool:
        """True when the key file carries no group or world permission bits.

        A missing file is reported as not OK.
        """
        try:
            mode = stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            return False
        return mode & 0o077 == 0

    def load(self) -> UnsealKeySet:
        """Load the key set.

        Raises:
            KeyMaterialNotFoundError: File is missing, unreadable or does not
                hold a valid key set.
        """
        if not self.path.exists():
            raise KeyMaterialNotFoundError(
                f"Unseal key file not found: {self.path}",
                operation="load_keys",
            )

        if not self.permissions_ok():
            logger.warning(
                "Unseal key file has insecure permissions (expected 600)",
                extra={"path": str(self.path)},
            )

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return UnsealKeySet.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            # Never include the exception text: a ValidationError echoes input values
            raise KeyMaterialNotFoundError(
                f"Unseal key file is unreadable or invalid: {self.path} ({type(e).__name__})",
                operation="load_keys",
            ) from None

    def save(self, key_set: UnsealKeySet) -> None:
        """Atomically write the key set with owner-only permissions."""
        atomic_write_json(self.path, key_set.model_dump(mode="json"), mode=KEY_FILE_MODE)
        logger.info(
            "Unseal keys saved",
            extra={
                "path": str(self.path),
                "shares": key_set.shares,
                "threshold": key_set.threshold,
            },
        )
