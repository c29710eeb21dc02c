"""
Process orchestration: relaunch the store with the launch command from a
ModeRecord.

Implementations:
- ComposeOrchestrator: rewrites VAULT_COMMAND in the compose .env file and
  restarts the service with ``docker compose``
- ManualOrchestrator: logs the command; the operator restarts the store

``relaunch`` returns True when the store was restarted and False when the
operator must restart it by hand. The caller treats False as a stop point
with remediation, not as an error.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import set_key

from libs.vault_mode.exceptions import OrchestratorError
from libs.vault_mode.types import ModeRecord

if TYPE_CHECKING:
    from libs.vault_mode.settings import VaultModeSettings

logger = logging.getLogger(__name__)

ENV_KEY = "VAULT_COMMAND"
COMPOSE_TIMEOUT_SECONDS = 300


class ProcessOrchestrator(ABC):
    """Relaunch contract for the store process."""

    @abstractmethod
    def relaunch(self, record: ModeRecord) -> bool:
        """Stop the store and start it with ``record.launch_command``.

        Returns:
            True if the store was relaunched, False if manual action is needed

        Raises:
            OrchestratorError: Relaunch was attempted and failed
        """


def write_launch_command(env_file: Path, launch_command: str) -> None:
    """Set VAULT_COMMAND in the compose dotenv file, creating it if needed.

    An existing assignment (including an ``export`` form) is replaced in
    place and other lines are kept. The value is written quoted.
    """
    env_file.parent.mkdir(parents=True, exist_ok=True)
    env_file.touch(exist_ok=True)
    set_key(env_file, ENV_KEY, launch_command, quote_mode="always")


class ComposeOrchestrator(ProcessOrchestrator):
    """Relaunch the store as a docker compose service."""

    def __init__(self, compose_file: Path, service: str, env_file: Path) -> None:
        self.compose_file = Path(compose_file)
        self.service = service
        self.env_file = Path(env_file)

    def _compose(self, *args: str) -> None:
        cmd = ["docker", "compose", "-f", str(self.compose_file), *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=COMPOSE_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired as e:
            raise OrchestratorError(
                f"docker compose {args[0]} timed out after {COMPOSE_TIMEOUT_SECONDS}s",
                operation="relaunch",
            ) from e

        if result.returncode != 0:
            raise OrchestratorError(
                f"docker compose {' '.join(args)} failed (exit {result.returncode}): "
                f"{result.stderr.strip()}",
                operation="relaunch",
            )

    def relaunch(self, record: ModeRecord) -> bool:
        write_launch_command(self.env_file, record.launch_command)
        logger.info(
            "Launch command written",
            extra={"env_file": str(self.env_file), "mode": record.mode.value},
        )

        if not shutil.which("docker"):
            logger.warning(
                "docker not found; restart the store manually",
                extra={"service": self.service},
            )
            return False

        self._compose("stop", self.service)
        self._compose("up", "-d", self.service)
        logger.info("Store relaunched", extra={"service": self.service, "mode": record.mode.value})
        return True


class ManualOrchestrator(ProcessOrchestrator):
    """No process control: the operator restarts the store."""

    def relaunch(self, record: ModeRecord) -> bool:
        logger.warning(
            "Manual restart required",
            extra={"mode": record.mode.value, "launch_command": record.launch_command},
        )
        return False


def create_orchestrator(settings: VaultModeSettings) -> ProcessOrchestrator:
    """Build the orchestrator selected by VAULT_ORCHESTRATOR."""
    if settings.vault_orchestrator == "manual":
        return ManualOrchestrator()
    return ComposeOrchestrator(
        compose_file=settings.vault_compose_file,
        service=settings.vault_compose_service,
        env_file=settings.vault_compose_env_file,
    )
