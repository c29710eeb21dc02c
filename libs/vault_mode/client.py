"""
Typed client for the secret store's administrative HTTP API.

This module implements StoreClient, a thin wrapper over the hvac library
covering exactly the calls the lifecycle coordinator needs: seal status,
init, unseal, and the KV v2 read/list/write interface.

Architecture:
    - Uses hvac client for the sys/* and KV v2 APIs
    - Token passed through unmodified (supplied by the bootstrap process)
    - Path convention: "dev/API_KEY" -> {mount}/data/dev/API_KEY
    - NO retries: backoff policy belongs to callers (libs.vault_mode.retry)

Error classification:
    - Connection refused / timeout      -> StoreUnreachableError
    - 503 with a sealed indicator       -> StoreSealedError
    - 401 / 403                         -> StoreUnauthorizedError
    - 404 on read                       -> SecretNotFoundError (empty list on list)
    - init on an initialized store      -> StoreAlreadyInitializedError
    - anything else from the API        -> StoreRequestError

Security Considerations:
    - Secret values, key shares and tokens are NEVER logged (only paths)
    - Token stored in memory only

Usage Example:
    >>> from libs.vault_mode.client import StoreClient
    >>> client = StoreClient(url="http://localhost:8200", token="root")
    >>> client.health()
    SealState(initialized=True, sealed=False, progress=0, threshold=1, shares=1)
    >>> client.write("dev/API_KEY", "abc123")
    >>> client.read_all(["dev"])
    {'dev/API_KEY': 'abc123'}
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import hvac
import requests
from hvac.exceptions import (
    Forbidden,
    InvalidPath,
    InvalidRequest,
    Unauthorized,
    VaultDown,
    VaultError,
    VaultNotInitialized,
)

from libs.vault_mode.exceptions import (
    SecretNotFoundError,
    StoreAlreadyInitializedError,
    StoreError,
    StoreRequestError,
    StoreSealedError,
    StoreUnauthorizedError,
    StoreUnreachableError,
)
from libs.vault_mode.types import SealState, SecretValue, UnsealKeySet

logger = logging.getLogger(__name__)


def unwrap_secret(data: dict[str, Any]) -> SecretValue:
    """Collapse single-value KV data ({"value": v}) to the plain value."""
    if set(data.keys()) == {"value"} and isinstance(data["value"], str):
        return data["value"]
    return dict(data)


def wrap_secret(value: SecretValue) -> dict[str, Any]:
    """Inverse of unwrap_secret: strings are stored as {"value": v}."""
    if isinstance(value, str):
        return {"value": value}
    if isinstance(value, dict):
        return dict(value)
    raise TypeError(f"secret value must be str or dict, got {type(value).__name__}")


class StoreClient:
    """
    Thin typed client over the secret store's administrative API.

    Every method either returns a structured result or raises a classified
    StoreError subclass. There is no caching: seal state can change at any
    time (another operator may seal the store), so each call hits the API.

    Example:
        >>> with StoreClient(url="http://localhost:8200", token="root") as client:
        ...     state = client.health()
        ...     if not state.sealed:
        ...         paths = client.list("dev")
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        mount_point: str = "secret",
        verify: bool = True,
        timeout: int = 5,
    ) -> None:
        """
        Initialize StoreClient.

        Args:
            url: Store address (e.g., "http://localhost:8200")
            token: Token for KV operations. sys/seal-status, sys/init and
                  sys/unseal are unauthenticated and work without one.
            mount_point: KV v2 mount point. Default: "secret"
            verify: Verify TLS certificates. Default: True
            timeout: Per-request timeout in seconds. Default: 5
        """
        self._url = url
        self._mount_point = mount_point
        self._client = hvac.Client(url=url, token=token, verify=verify, timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    @property
    def mount_point(self) -> str:
        return self._mount_point

    def use_token(self, token: str) -> None:
        """Replace the token used for subsequent KV calls."""
        self._client.token = token
        logger.debug("Store token replaced", extra={"vault_url": self._url})

    # ------------------------------------------------------------------
    # Error translation
    # ------------------------------------------------------------------

    @contextmanager
    def _translate_errors(self, operation: str, path: str | None = None) -> Iterator[None]:
        try:
            yield
        except StoreError:
            raise
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise StoreUnreachableError(
                f"Store unreachable at {self._url}: {type(e).__name__}",
                operation=operation,
                path=path,
            ) from e
        except VaultDown as e:
            # 503: sealed, or standby/restarting
            if "sealed" in str(e).lower():
                raise StoreSealedError(
                    "Store is sealed. Unseal it before accessing secrets "
                    "(python scripts/vault_mode.py unseal)",
                    operation=operation,
                    path=path,
                ) from e
            raise StoreUnreachableError(
                f"Store unavailable at {self._url}: {e}",
                operation=operation,
                path=path,
            ) from e
        except (Unauthorized, Forbidden) as e:
            raise StoreUnauthorizedError(
                f"Permission denied: verify the token is valid and has a policy for "
                f"{self._mount_point}/{path or ''}",
                operation=operation,
                path=path,
            ) from e
        except VaultNotInitialized as e:
            raise StoreRequestError(
                "Store is not initialized",
                operation=operation,
                path=path,
            ) from e
        except VaultError as e:
            if not isinstance(e, InvalidPath):
                logger.error(
                    "Store request failed",
                    extra={
                        "operation": operation,
                        "secret_path": path,
                        "error_type": type(e).__name__,
                    },
                )
            raise StoreRequestError(
                f"Store error during {operation}: {e}",
                operation=operation,
                path=path,
            ) from e

    # ------------------------------------------------------------------
    # sys/* API
    # ------------------------------------------------------------------

    def health(self) -> SealState:
        """
        Fetch the live seal state (GET /v1/sys/seal-status).

        Returns:
            SealState with initialized, sealed, progress, threshold and shares

        Raises:
            StoreUnreachableError: Listener cannot be reached
            StoreRequestError: Unexpected response
        """
        with self._translate_errors("health"):
            response = self._client.sys.read_seal_status()
            try:
                return SealState(
                    initialized=bool(response["initialized"]),
                    sealed=bool(response["sealed"]),
                    progress=int(response.get("progress", 0)),
                    threshold=int(response.get("t", 0)),
                    shares=int(response.get("n", 0)),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise StoreRequestError(
                    f"Invalid seal-status response: {e}", operation="health"
                ) from e

    def init(self, shares: int, threshold: int) -> UnsealKeySet:
        """
        Initialize the store (PUT /v1/sys/init).

        Callers must check ``health().initialized`` first; against an
        initialized store this raises instead of returning a fresh key set.

        Args:
            shares: Number of key shares to generate
            threshold: Number of shares required to unseal

        Returns:
            UnsealKeySet with base64 key shares in generation order

        Raises:
            StoreAlreadyInitializedError: Store was already initialized
        """
        try:
            with self._translate_errors("init"):
                response = self._client.sys.initialize(
                    secret_shares=shares,
                    secret_threshold=threshold,
                )
        except StoreRequestError as e:
            if isinstance(e.__cause__, InvalidRequest) and "already initialized" in str(
                e.__cause__
            ).lower():
                raise StoreAlreadyInitializedError(
                    "Store is already initialized", operation="init"
                ) from e.__cause__
            raise

        keys = response.get("keys_base64") or response.get("keys") or []
        key_set = UnsealKeySet(
            keys=list(keys),
            threshold=threshold,
            shares=shares,
            root_token=response["root_token"],
            created_at=datetime.now(UTC),
        )
        logger.info(
            "Store initialized",
            extra={"shares": shares, "threshold": threshold, "vault_url": self._url},
        )
        return key_set

    def unseal(self, key: str) -> SealState:
        """
        Submit one unseal key share (PUT /v1/sys/unseal).

        Returns:
            SealState after the submission (progress resets to 0 once unsealed)
        """
        with self._translate_errors("unseal"):
            response = self._client.sys.submit_unseal_key(key=key)
        return SealState(
            initialized=True,
            sealed=bool(response.get("sealed", True)),
            progress=int(response.get("progress", 0)),
            threshold=int(response.get("t", 0)),
            shares=int(response.get("n", 0)),
        )

    # ------------------------------------------------------------------
    # KV v2 API
    # ------------------------------------------------------------------

    def read(self, path: str) -> SecretValue:
        """
        Read the latest version of a secret.

        Raises:
            SecretNotFoundError: No live secret at path
            StoreSealedError: Store is sealed
            StoreUnreachableError: Listener cannot be reached
        """
        try:
            with self._translate_errors("read", path):
                response = self._client.secrets.kv.v2.read_secret_version(
                    path=path,
                    mount_point=self._mount_point,
                    raise_on_deleted_version=True,
                )
        except StoreRequestError as e:
            if isinstance(e.__cause__, InvalidPath):
                raise SecretNotFoundError(
                    f"Secret not found: {self._mount_point}/{path}",
                    operation="read",
                    path=path,
                ) from e.__cause__
            raise

        data = (response or {}).get("data", {}).get("data")
        if data is None:
            raise SecretNotFoundError(
                f"Secret has no data: {self._mount_point}/{path}",
                operation="read",
                path=path,
            )
        return unwrap_secret(data)

    def list(self, prefix: str) -> list[str]:
        """
        List every secret path under prefix, recursively.

        Iterative implementation using a stack so deeply nested trees do
        not hit the recursion limit.

        Returns:
            Sorted full paths (e.g., ["dev/API_KEY", "dev/db/PASSWORD"]).
            Empty list when the prefix does not exist.
        """
        all_paths: list[str] = []
        stack = [prefix.strip("/")]

        while stack:
            current_path = stack.pop()
            try:
                with self._translate_errors("list", current_path):
                    response = self._client.secrets.kv.v2.list_secrets(
                        path=current_path,
                        mount_point=self._mount_point,
                    )
            except StoreRequestError as e:
                if isinstance(e.__cause__, InvalidPath):
                    # Empty directory or non-existent prefix
                    continue
                raise

            keys = (response or {}).get("data", {}).get("keys", [])
            for key in keys:
                full_path = f"{current_path}/{key}" if current_path else key
                if key.endswith("/"):
                    stack.append(full_path.rstrip("/"))
                else:
                    all_paths.append(full_path)

        logger.debug(
            "Listed store secrets",
            extra={"prefix": prefix, "count": len(all_paths)},
        )
        return sorted(all_paths)

    def read_all(self, prefixes: list[str]) -> dict[str, SecretValue]:
        """
        Read every secret under the given prefixes into a flat map.

        Any failure propagates; use BackupEngine.snapshot for best-effort
        export that records omissions instead.
        """
        result: dict[str, SecretValue] = {}
        for prefix in prefixes:
            for path in self.list(prefix):
                result[path] = self.read(path)
        return result

    def write(self, path: str, value: SecretValue) -> None:
        """
        Write (create or overwrite) a secret. Last write wins.

        Raises:
            StoreSealedError: Store is sealed
            StoreUnauthorizedError: Token lacks create/update capability
            StoreRequestError: Write rejected
        """
        with self._translate_errors("write", path):
            self._client.secrets.kv.v2.create_or_update_secret(
                path=path,
                secret=wrap_secret(value),
                mount_point=self._mount_point,
            )
        logger.debug("Secret written", extra={"secret_path": path})

    def close(self) -> None:
        """Close the hvac client's HTTP adapter (connection pool)."""
        adapter = getattr(self._client, "adapter", None)
        if adapter and hasattr(adapter, "close"):
            adapter.close()

    def __enter__(self) -> StoreClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
