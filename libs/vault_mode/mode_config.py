"""Durable storage for the authoritative ModeRecord.

The mode record is the single source of truth for how the store is launched.
It is written atomically (temp file in the same directory, fsync, rename,
fsync directory), so a crash mid-write leaves either the previous record or
the new one, never a file that fails to parse.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from libs.common.file_utils import atomic_write_json
from libs.vault_mode.exceptions import ModeNotConfiguredError, ModeRecordCorruptError
from libs.vault_mode.types import ModeRecord, StorageMode

logger = logging.getLogger(__name__)


class ModeConfig:
    """Load and save the mode record file.

    Example:
        >>> config = ModeConfig(Path(".devcontainer/data/vault-mode.json"))
        >>> config.load_or_default().mode
        <StorageMode.ephemeral: 'ephemeral'>
        >>> config.save(ModeRecord.for_mode(StorageMode.persistent, auto_unseal=True))
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> ModeRecord:
        """Load the mode record.

        Returns:
            The persisted ModeRecord.

        Raises:
            ModeNotConfiguredError: No record on disk.
            ModeRecordCorruptError: Record exists but is not valid JSON or
                does not match the ModeRecord schema.
        """
        if not self.path.exists():
            raise ModeNotConfiguredError(
                f"No mode record at {self.path}; store defaults to ephemeral mode",
                operation="load_mode",
            )

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return ModeRecord.model_validate(data)
        except (json.JSONDecodeError, ValidationError, UnicodeDecodeError) as e:
            raise ModeRecordCorruptError(
                f"Mode record at {self.path} does not parse: {type(e).__name__}",
                operation="load_mode",
            ) from e

    def load_or_default(self) -> ModeRecord:
        """Load the record, treating absence as ephemeral mode.

        Corrupt records still raise; only absence has a default.
        """
        try:
            return self.load()
        except ModeNotConfiguredError:
            logger.debug("No mode record, defaulting to ephemeral", extra={"path": str(self.path)})
            return ModeRecord.for_mode(StorageMode.ephemeral, updated_by="default")

    def save(self, record: ModeRecord) -> None:
        """Atomically replace the mode record."""
        atomic_write_json(self.path, record.model_dump(mode="json"))
        logger.info(
            "Mode record saved",
            extra={
                "path": str(self.path),
                "mode": record.mode.value,
                "auto_unseal": record.auto_unseal,
            },
        )
