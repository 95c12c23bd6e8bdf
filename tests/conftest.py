"""
Pytest configuration and shared fixtures for Vaulton tests.
"""

import os
from urllib.parse import urlsplit

import pytest
import requests

# Set test environment before importing the package
os.environ["VAULTON_ENV"] = "testing"
os.environ["VAULTON_BACKEND_URL"] = "http://dev.vaulton.test"
os.environ["SESSION_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RP_ID"] = "localhost"
os.environ["RP_ORIGIN"] = "http://localhost:3000"
os.environ["LOG_LEVEL"] = "WARNING"

import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

RECIPIENT = "GBRPYHIL2CI3FNQ4BXLFMNDLFJUNPU2HY3ZMFSHONUCEOASW7QC7OX2H"
SMART_ACCOUNT = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC"


class FlaskTestSession:
    """``requests.Session`` stand-in that routes calls into a Flask test client."""

    def __init__(self, client):
        self.client = client
        self.headers = {}
        self.calls = []

    def request(self, method, url, json=None, params=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path, json))
        resp = self.client.open(path, method=method, json=json, query_string=params, headers=self.headers)

        out = requests.Response()
        out.status_code = resp.status_code
        out._content = resp.get_data()
        out.encoding = "utf-8"
        out.url = url
        return out


@pytest.fixture
def test_config():
    """Configuration for tests, independent of the developer's .env."""
    from vaulton.config import get_config

    cfg = get_config()
    cfg.update(
        {
            "VAULTON_ENV": "testing",
            "SESSION_BACKEND": "memory",
            "RATE_LIMIT_ENABLED": False,
            "ASSERTION_TIMEOUT_SECONDS": 5.0,
            "DEV_INITIAL_BALANCE_STROOPS": 100 * 10_000_000,
        }
    )
    return cfg


@pytest.fixture
def ledger(test_config):
    """Fresh in-memory development ledger."""
    from vaulton.dev_backend import DevLedger

    return DevLedger(rp_id="localhost", initial_balance=test_config["DEV_INITIAL_BALANCE_STROOPS"])


@pytest.fixture
def app(ledger, test_config):
    """Create the development backend application."""
    from vaulton.dev_backend import create_dev_app

    flask_app = create_dev_app(ledger, test_config)
    flask_app.config.update({"TESTING": True})
    return flask_app


@pytest.fixture
def client(app):
    """Create a test client for the development backend."""
    return app.test_client()


@pytest.fixture
def backend(client):
    """Real BackendClient wired to the Flask test client."""
    from vaulton.backend import BackendClient

    return BackendClient(base_url="http://dev.vaulton.test", session=FlaskTestSession(client))


@pytest.fixture
def authenticator():
    """In-process passkey authenticator."""
    from vaulton.authenticator import SoftwareAuthenticator

    return SoftwareAuthenticator(rp_id="localhost", origin="http://localhost:3000")


@pytest.fixture
def memory_store():
    from vaulton.storage import MemorySessionStore

    return MemorySessionStore()


@pytest.fixture
def wallet(backend, authenticator, memory_store):
    """Wallet talking to the development backend."""
    from vaulton.wallet import PasskeyWallet

    return PasskeyWallet(backend, authenticator, memory_store, assertion_timeout=5.0)


@pytest.fixture
def sample_session():
    from vaulton.models import Session

    return Session(
        user_id="user_123",
        smart_account_id=SMART_ACCOUNT,
        passkey_pubkey="BPasskeyPoint",
        public_key_hex="BPasskeyPoint",
        name="Test User",
        created_at="2026-01-01T00:00:00+00:00",
        credential_id="cred_abc",
    )


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line("markers", "slow: tests that take a long time to run")
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests that exercise the development backend")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
