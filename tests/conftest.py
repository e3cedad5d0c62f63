"""Shared pytest fixtures for all tests."""
import sys
from pathlib import Path

import pytest

# Add src/backend to path for imports (but don't import app yet)
sys.path.insert(0, str(Path(__file__).parent.parent / "src" / "backend"))


@pytest.fixture
def client():
    """Create a test client that returns HTTP responses instead of raising exceptions.

    Note: This fixture lazily imports the app and does not run startup, so no
    database is touched unless a test asks for one.
    """
    from fastapi.testclient import TestClient
    from app import app
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def sample_rows():
    """Flat rows for root(1) -> cat(2), dog(3) -> puppy(4)."""
    return [
        {"id": 1, "parent_id": None, "label": "root"},
        {"id": 2, "parent_id": 1, "label": "cat"},
        {"id": 3, "parent_id": 1, "label": "dog"},
        {"id": 4, "parent_id": 3, "label": "puppy"},
    ]
