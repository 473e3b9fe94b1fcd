from __future__ import annotations

import pytest

_ENV_VARS = (
    "CLOUDBUILD_TIMEOUT_SIGNAL",
    "CLOUDBUILD_TIMEOUT_BEFORE",
    "CLOUDBUILD_TIMEOUT_EXIT_CODE",
    "CLOUDBUILD_API_ENDPOINT",
    "CLOUDBUILD_TIMEOUT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of configuration tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
