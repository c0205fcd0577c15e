"""
Pytest configuration and fixtures for Print Order Backend tests.
"""

import os
import shutil
import tempfile

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="print_test_data_")
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="print_test_uploads_")
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "test-password-123"

from print_order_backend.configuration import load_settings
from print_order_backend.main import create_app


ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "test-password-123"

# Minimal PDF that is technically valid
PDF_CONTENT = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
trailer
<< /Root 1 0 R >>
%%EOF"""


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(os.environ["DATA_DIR"], ignore_errors=True)
    shutil.rmtree(os.environ["UPLOAD_DIR"], ignore_errors=True)


def _merge(base, extra):
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture
def make_settings(tmp_path):
    """Build isolated settings rooted in a per-test temporary directory."""

    def _make(**overrides):
        base = {
            "storage": {
                "data_dir": str(tmp_path / "data"),
                "upload_dir": str(tmp_path / "uploads"),
            },
            "admin": {"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD},
        }
        return load_settings(overrides=_merge(base, overrides), environ={})

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def make_client(make_settings):
    """Create a test client for an app built with extra config overrides."""

    def _make(**overrides):
        return TestClient(create_app(make_settings(**overrides)))

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def sample_pdf():
    return PDF_CONTENT


@pytest.fixture
def order_payload():
    return {
        "fullName": "Jane Doe",
        "phoneNumber": "555-0100",
        "printType": "document",
        "totalCost": 12.5,
        "files": [
            {"name": "a.pdf", "size": 1000, "type": "application/pdf", "path": "/uploads/x-a.pdf"},
        ],
    }
