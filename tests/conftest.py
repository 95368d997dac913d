"""Pytest configuration shared by the ReelMatch test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ``app`` lives at the repository root; make it importable without an install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def anyio_backend() -> str:
    """Run AnyIO-marked tests on asyncio only, so trio is never required."""

    return "asyncio"
