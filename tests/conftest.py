from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"


def _wrapper(tmp_path: Path, name: str, script: str) -> str:
    path = tmp_path / name
    path.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{EXAMPLES_DIR / script}" "$@"\n', encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("AGENTKOPPLER_CONFIG", raising=False)
    monkeypatch.delenv("AGENTKOPPLER_BYPASS_APPROVALS", raising=False)


@pytest.fixture
def mock_codex_bin(tmp_path: Path) -> str:
    return _wrapper(tmp_path, "codex", "mock_codex_app_server.py")


@pytest.fixture
def mock_claude_bin(tmp_path: Path) -> str:
    return _wrapper(tmp_path, "claude", "mock_claude_cli.py")
