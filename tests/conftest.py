import sys
from pathlib import Path

import pytest


# Ensure tests can import the splitter module regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("M3U_SPLITTER_CONFIG", raising=False)
    monkeypatch.delenv("M3U_SPLITTER_LOG_FILE", raising=False)


@pytest.fixture
def write_playlist(tmp_path):
    def _write(content: str, name: str = "input.m3u") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
