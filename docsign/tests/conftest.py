import os

import pytest

from docsign.app.core.config import Settings, get_settings
from docsign.tests.fixtures.cert_factory import write_p12


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep host DOCSIGN_* variables and the settings cache out of tests."""
    for key in list(os.environ):
        if key.startswith("DOCSIGN_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def bundle(tmp_path):
    """A valid password-protected PKCS#12 bundle in its own directory."""
    cert_dir = tmp_path / "certs"
    cert_dir.mkdir()
    return write_p12(cert_dir)


@pytest.fixture
def crypto_settings(bundle):
    return Settings(
        certificate_path=str(bundle.path),
        certificate_password=bundle.password,
        cms_engine="cryptography",
        signature_reason="Case filing",
        signature_location="Madrid",
    )
