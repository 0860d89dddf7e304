"""Pytest configuration for test isolation.

Makes the workspace packages importable without an install (``packages/``
for ``spending_guard``, ``libs/db/src`` for ``db`` and the repo root for
``tests.helpers``) and scrubs engine-related environment variables so a
developer's shell or ``.env`` never leaks into a test.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
# Ensure local packages precede anything installed on sys.path.
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

_SCRUBBED_PREFIXES = ("SPENDING_GUARD",)
_SCRUBBED_NAMES = ("DATABASE_URL", "OPENAI_API_KEY")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove engine configuration from the environment for every test.

    The CLI loads ``.env`` from the working directory, so each test also runs
    from its own temporary directory.
    """

    import os

    for name in list(os.environ):
        if name.startswith(_SCRUBBED_PREFIXES) or name in _SCRUBBED_NAMES:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
