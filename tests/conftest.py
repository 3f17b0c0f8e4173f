"""Pytest configuration helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()


_CONCAT_SCRIPT = (
    "import sys\n"
    "out, *parts = sys.argv[1:]\n"
    "with open(out, 'wb') as dst:\n"
    "    for part in parts:\n"
    "        with open(part, 'rb') as src:\n"
    "            dst.write(src.read())\n"
)


def byte_concat_command(inputs, output):
    """Stand-in for ffmpeg's concat protocol: joins the inputs byte for byte."""
    return [sys.executable, "-c", _CONCAT_SCRIPT, str(output), *(str(path) for path in inputs)]


@pytest.fixture()
def concat_command():
    return byte_concat_command
