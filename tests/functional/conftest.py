"""Fixtures for functional tests against a running backend."""
import os

import pytest
import requests

BACKEND_URL = os.environ.get("BACKEND_URL", "https://localhost:8443")
VERIFY_TLS = os.environ.get("BACKEND_VERIFY_TLS", "false").lower() in ("true", "1", "yes")


@pytest.fixture(scope="module")
def backend_url():
    """Backend URL."""
    return BACKEND_URL


@pytest.fixture(scope="module")
def backend_available(backend_url):
    """Ensure backend is running."""
    try:
        resp = requests.get(f"{backend_url}/health", timeout=10, verify=VERIFY_TLS)
        if resp.status_code != 200:
            pytest.skip("Backend not healthy")
    except requests.exceptions.ConnectionError:
        pytest.skip("Backend not available")
    return True


@pytest.fixture
def session():
    """A requests session with the configured TLS verification."""
    with requests.Session() as s:
        s.verify = VERIFY_TLS
        yield s
