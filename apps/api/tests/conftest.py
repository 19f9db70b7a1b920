from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure src/ is on the import path when tests are run from the repo root.
PROJECT_SRC: Path = Path(__file__).resolve().parents[1] / "src"
if str(PROJECT_SRC) not in sys.path:
    sys.path.insert(0, str(PROJECT_SRC))


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip PostgreSQL-backed tests unless a test database is configured."""
    if os.getenv("WEATHER_TEST_DSN"):
        return
    skip_integration = pytest.mark.skip(reason="WEATHER_TEST_DSN is not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)
