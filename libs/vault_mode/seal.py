"""
Seal/unseal state machine for the backing store.

States (see SealStatus):
    ephemeral                  - dev server, no seal concept; every request is a no-op
    persistent_uninitialized   - raft storage with no init yet
    persistent_sealed          - initialized, waiting for key shares
    persistent_unsealed        - serving requests

Transitions driven here:
    persistent_sealed -> persistent_unsealed via unseal(key) until progress
    reaches the threshold. Sealing is always an external action (operator
    or restart); this module never seals.

Auto-unseal submits the first threshold key shares from the UnsealKeyStore in
stored order and stops as soon as the store reports unsealed. With auto-unseal disabled the
operator gets exact manual instructions instead.

Every store call goes through bounded backoff: the store may still be
starting when the coordinator asks for its state.
"""

from __future__ import annotations

import logging

from libs.vault_mode.client import StoreClient
from libs.vault_mode.exceptions import (
    InsufficientKeysError,
    ManualUnsealRequiredError,
    UnsealFailedError,
)
from libs.vault_mode.retry import DEFAULT_TIMEOUT_SECONDS, call_with_backoff
from libs.vault_mode.types import ModeRecord, SealState, SealStatus, StorageMode, UnsealKeySet

logger = logging.getLogger(__name__)


class SealManager:
    """Drive the store through the seal state machine.

    Args:
        client: StoreClient for the running store
        key_file: Location of the unseal key file, used in operator instructions
        ready_timeout: Backoff budget (seconds) for each store call
    """

    def __init__(
        self,
        client: StoreClient,
        key_file: str = ".devcontainer/data/vault-unseal-keys.json",
        ready_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.key_file = str(key_file)
        self.ready_timeout = ready_timeout

    def _health(self) -> SealState:
        return call_with_backoff(
            self.client.health,
            timeout=self.ready_timeout,
            description="store seal status",
        )

    def state(self, record: ModeRecord) -> SealStatus:
        """Derive the state-machine state for the given mode record.

        Ephemeral records never touch the store.
        """
        if record.mode == StorageMode.ephemeral:
            return SealStatus.ephemeral

        seal_state = self._health()
        if not seal_state.initialized:
            return SealStatus.persistent_uninitialized
        if seal_state.sealed:
            return SealStatus.persistent_sealed
        return SealStatus.persistent_unsealed

    def manual_instructions(self, threshold: int) -> list[str]:
        """Operator steps that unseal the store by hand."""
        return [
            f"export VAULT_ADDR={self.client.url}",
            f"Run 'vault operator unseal' {threshold} time(s), each with a different "
            f"key from {self.key_file} (keys_base64 / keys field)",
            "Or run: python scripts/vault_mode.py unseal",
        ]

    def ensure_unsealed(self, record: ModeRecord, key_set: UnsealKeySet | None) -> SealState:
        """
        Bring the store to an unsealed state if the record requires it.

        Idempotent: an unsealed store is left untouched and no keys are
        submitted.

        Args:
            record: Active mode record (decides ephemeral vs persistent and
                whether auto-unseal is allowed)
            key_set: Loaded key set; may be None for ephemeral records or
                when auto-unseal is disabled

        Returns:
            SealState after the call (sealed=False on success)

        Raises:
            UnsealFailedError: Store is uninitialized, or still sealed after
                the first threshold keys
            ManualUnsealRequiredError: Sealed and auto_unseal is disabled
            InsufficientKeysError: Fewer keys than the threshold
            WaitTimeoutError: Store never became reachable
        """
        if record.mode == StorageMode.ephemeral:
            logger.debug("Ephemeral mode, nothing to unseal")
            return SealState(initialized=True, sealed=False)

        seal_state = self._health()

        if not seal_state.initialized:
            raise UnsealFailedError(
                "Store is not initialized; nothing to unseal. "
                "Run a switch to persistent mode to initialize it.",
                operation="unseal",
            )

        if not seal_state.sealed:
            logger.debug("Store already unsealed")
            return seal_state

        threshold = seal_state.threshold or (key_set.threshold if key_set else 1)

        if not record.auto_unseal:
            raise ManualUnsealRequiredError(self.manual_instructions(threshold))

        if key_set is None or len(key_set.keys) < threshold:
            raise InsufficientKeysError(
                available=len(key_set.keys) if key_set else 0,
                threshold=threshold,
            )

        logger.info("Auto-unsealing store", extra={"threshold": threshold})
        for index, key in enumerate(key_set.keys[:threshold], start=1):
            seal_state = call_with_backoff(
                lambda key=key: self.client.unseal(key),
                timeout=self.ready_timeout,
                description="store unseal",
            )
            logger.info(
                "Unseal key submitted",
                extra={"key_index": index, "progress": seal_state.progress, "threshold": threshold},
            )
            if not seal_state.sealed:
                logger.info("Store unsealed", extra={"keys_used": index})
                return seal_state

        raise UnsealFailedError(
            f"Store still sealed after submitting {threshold} key(s); "
            f"verify {self.key_file} matches the current store initialization",
            operation="unseal",
        )
