"""
Error taxonomy for the signing engine.

Every failure is terminal for the current signing attempt. Callers branch
on the concrete class (e.g. "check your password" versus "certificate file
missing"), never on message text.
"""

import errno
from typing import Optional


class SignatureError(RuntimeError):
    """Base class for every signing-engine failure."""


class CertificateNotFound(SignatureError, FileNotFoundError):
    """The configured PKCS#12 file does not exist."""

    def __init__(self, path: str):
        self.path = str(path)
        self.message = (
            f"Certificate not found: {self.path}. "
            "Check the certificate path in the configuration."
        )
        super().__init__(self.message)
        self.errno = errno.ENOENT
        self.strerror = self.message
        self.filename = self.path

    def __str__(self) -> str:
        return self.message


class InvalidPassword(SignatureError):
    """The PKCS#12 bundle could not be decrypted with the given password."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Incorrect certificate password. "
            "Check the password in the configuration."
        )


class InvalidCertificate(SignatureError):
    """The bundle is not usable PKCS#12 material."""


class ExternalSignerFailure(SignatureError):
    """The CMS engine failed, timed out or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        returncode: Optional[int] = None,
        diagnostics: str = "",
    ):
        self.returncode = returncode
        self.diagnostics = diagnostics
        if diagnostics:
            message = f"{message}: {diagnostics.strip()}"
        super().__init__(message)


class MalformedCms(SignatureError, ValueError):
    """The CMS container could not be parsed as SignedData."""

    def __init__(self, detail: str):
        super().__init__(f"Malformed CMS structure: {detail}")


class PlaceholderTooSmall(SignatureError):
    """The detached CMS does not fit in the reserved /Contents field."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Signature too large for reserved placeholder: "
            f"{required} hex characters required, {available} reserved"
        )


class PdfPreparationError(SignatureError):
    """The input PDF cannot receive a signature placeholder."""
