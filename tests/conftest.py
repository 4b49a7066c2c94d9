"""Global test fixtures for stacksmith."""

from __future__ import annotations

import pytest

from stacksmith.config import ENV_VARS


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    """Start every test without stacksmith environment overrides.

    A developer shell with GITHUB_REPOS or STACKSMITH_* set would otherwise
    leak into config loading.
    """
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / ".stacksmith" / "stacks.json"
