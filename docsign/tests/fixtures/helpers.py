import os
import shutil
import tempfile

import pytest

from docsign.app.services.cms_signer import TEMP_DIR_PREFIX


requires_openssl = pytest.mark.skipif(
    shutil.which("openssl") is None,
    reason="openssl binary not available on PATH",
)


def signing_temp_dirs() -> set:
    """Names of engine working directories currently in the temp root."""
    return {
        entry
        for entry in os.listdir(tempfile.gettempdir())
        if entry.startswith(TEMP_DIR_PREFIX)
    }
