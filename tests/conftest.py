"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _clear_shopledger_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove ``SHOPLEDGER_*`` variables before each test.

    Settings loaders read the process environment, so a developer's shell or
    ``.env`` would otherwise leak into assertions about defaults.
    """
    for name in list(os.environ):
        if name.startswith("SHOPLEDGER_"):
            monkeypatch.delenv(name, raising=False)
