from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs from writing session logs under the home directory
    os.environ.setdefault("GITSOCIAL_LOG_DISABLE_FILE", "1")


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use asyncio backend only.

    The git layer runs subprocesses through asyncio.to_thread and shares
    in-flight asyncio futures, neither of which works under trio.
    """
    return "asyncio"


@pytest.fixture
def storage_base(tmp_path):
    base = tmp_path / "storage"
    base.mkdir()
    return base


