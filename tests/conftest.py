"""Pytest configuration shared by the chaosload tests."""

import os
import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path so chaosload and tests.fakes import
# without an editable install.
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep CHAOSLOAD_* variables from the developer's shell or .env out of tests."""
    for name in list(os.environ):
        if name.startswith("CHAOSLOAD_"):
            monkeypatch.delenv(name)
