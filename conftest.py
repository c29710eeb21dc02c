"""
Root conftest for all tests.

Keeps the suite hermetic: settings never pick up the developer's
environment or .env file, and tenacity backoff never sleeps.

IMPORTANT: This file must exist at the project root to be loaded first.
"""

import pytest

from libs.vault_mode.settings import get_settings


@pytest.fixture(autouse=True)
def fast_retry_sleep(monkeypatch):
    """Eliminate retry backoff delays in tests to keep the suite fast."""
    monkeypatch.setattr("tenacity.nap.sleep", lambda *args, **kwargs: None)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Point every settings-derived path at a per-test directory."""
    for name in (
        "VAULT_ADDR",
        "VAULT_TOKEN",
        "VAULT_UNSEAL_KEYS_FILE",
        "VAULT_ORCHESTRATOR",
        "VAULT_SECRET_PREFIXES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VAULT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
