from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.upper().startswith("LLMVERSE_"):
            monkeypatch.delenv(key)
    # Keep a developer's .env out of the tests.
    monkeypatch.chdir(tmp_path)
