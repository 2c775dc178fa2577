"""
CMS signing engines.

A CmsSigner turns the byte-range pre-image of a prepared PDF into an
*attached* CMS SignedData (DER or BER), signed with SHA-256 and carrying
the signer certificate, its chain, and the contentType / signingTime /
messageDigest authenticated attributes. Detaching happens downstream.

Two engines are provided:

- OpenSslCmsSigner: shells out to `openssl cms -sign`. Key, certificate,
  chain and content are written to a private temporary directory that is
  removed on every exit path (success, failure, timeout, cancellation).
- InProcessCmsSigner: builds the same structure with the cryptography
  PKCS#7 builder, in a worker thread, without touching the filesystem.

Both engines cross-check the messageDigest attribute of their output
against the digest computed by the caller over the same byte range.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from docsign.app.core.config import Settings
from docsign.app.core.errors import ExternalSignerFailure, MalformedCms
from docsign.app.services import cms
from docsign.app.services.certificates import LoadedCertificate
from docsign.app.utils.hashing import normalize_digest_algorithm

logger = logging.getLogger("docsign.cms_signer")

TEMP_DIR_PREFIX = "pdf-sign-"


# ----------------------------------------------------------------------
# Interface
# ----------------------------------------------------------------------

class CmsSigner(Protocol):
    """
    Capability that produces an attached CMS SignedData.

    `content` is the exact byte-range pre-image; engines hash it
    themselves. `digest` is the caller's SHA-256 over the same bytes and
    must equal the messageDigest attribute of the result.
    """

    name: str

    async def sign_digest(
        self,
        digest: bytes,
        credentials: LoadedCertificate,
        *,
        content: bytes,
        digest_algorithm: str = "sha256",
    ) -> bytes:
        ...


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------

def _check_message_digest(engine: str, cms_der: bytes, digest: bytes) -> None:
    try:
        content_info = cms.load_signed_data(cms_der)
    except MalformedCms as exc:
        raise ExternalSignerFailure(
            f"{engine} returned an unparsable CMS structure",
            diagnostics=str(exc),
        ) from exc

    signed_digest = cms.message_digest(content_info)
    if signed_digest is None:
        raise ExternalSignerFailure(
            f"{engine} output lacks the messageDigest signed attribute"
        )
    if signed_digest != digest:
        raise ExternalSignerFailure(
            f"{engine} signed a different digest than the prepared byte range"
        )


def _chain_pem(credentials: LoadedCertificate) -> bytes:
    return b"".join(
        cert.public_bytes(serialization.Encoding.PEM)
        for cert in credentials.chain
    )


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)


# ----------------------------------------------------------------------
# OpenSSL subprocess engine
# ----------------------------------------------------------------------

class OpenSslCmsSigner:
    """CMS signing delegated to an `openssl cms` child process."""

    name = "openssl"

    def __init__(
        self,
        *,
        binary: str = "openssl",
        timeout_seconds: float = 30.0,
    ):
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    def _command(self, workdir: Path, with_chain: bool) -> list:
        args = [
            self.binary,
            "cms",
            "-sign",
            "-binary",
            "-nodetach",
            "-md",
            "sha256",
            "-signer",
            str(workdir / "cert.pem"),
            "-inkey",
            str(workdir / "key.pem"),
            "-in",
            str(workdir / "data.bin"),
            "-outform",
            "DER",
            "-out",
            str(workdir / "sig.der"),
        ]
        if with_chain:
            args += ["-certfile", str(workdir / "chain.pem")]
        return args

    async def _run(self, args: list) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExternalSignerFailure(
                f"OpenSSL is not installed ({self.binary} not found). "
                "It is required for cryptographic document signing"
            ) from exc
        except PermissionError as exc:
            raise ExternalSignerFailure(
                f"OpenSSL binary is not executable: {self.binary}"
            ) from exc

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ExternalSignerFailure(
                f"OpenSSL did not finish within {self.timeout_seconds:g}s"
            ) from exc
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            raise ExternalSignerFailure(
                "OpenSSL signing failed",
                returncode=process.returncode,
                diagnostics=stderr.decode("utf-8", errors="replace"),
            )

    async def sign_digest(
        self,
        digest: bytes,
        credentials: LoadedCertificate,
        *,
        content: bytes,
        digest_algorithm: str = "sha256",
    ) -> bytes:
        normalize_digest_algorithm(digest_algorithm)
        private_key = credentials.require_private_key()

        key_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        cert_pem = credentials.certificate.public_bytes(
            serialization.Encoding.PEM
        )
        chain_pem = _chain_pem(credentials)

        with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmp:
            workdir = Path(tmp)

            _write_private(workdir / "key.pem", key_pem)
            (workdir / "cert.pem").write_bytes(cert_pem)
            (workdir / "data.bin").write_bytes(content)
            if chain_pem:
                (workdir / "chain.pem").write_bytes(chain_pem)

            logger.debug(
                "cms_signing_started",
                extra={"engine": self.name, "chain_length": len(credentials.chain)},
            )

            await self._run(self._command(workdir, with_chain=bool(chain_pem)))

            try:
                attached = (workdir / "sig.der").read_bytes()
            except FileNotFoundError as exc:
                raise ExternalSignerFailure(
                    "OpenSSL exited successfully but wrote no signature"
                ) from exc

        _check_message_digest("OpenSSL", attached, digest)
        return attached


# ----------------------------------------------------------------------
# In-process engine
# ----------------------------------------------------------------------

class InProcessCmsSigner:
    """CMS signing with the cryptography PKCS#7 builder."""

    name = "cryptography"

    def _sign_sync(self, credentials: LoadedCertificate, content: bytes) -> bytes:
        builder = (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(content)
            .add_signer(
                credentials.certificate,
                credentials.require_private_key(),
                hashes.SHA256(),
            )
        )
        for cert in credentials.chain:
            builder = builder.add_certificate(cert)

        try:
            return builder.sign(
                serialization.Encoding.DER,
                [pkcs7.PKCS7Options.Binary],
            )
        except (ValueError, TypeError) as exc:
            raise ExternalSignerFailure(
                "In-process CMS signing failed",
                diagnostics=str(exc),
            ) from exc

    async def sign_digest(
        self,
        digest: bytes,
        credentials: LoadedCertificate,
        *,
        content: bytes,
        digest_algorithm: str = "sha256",
    ) -> bytes:
        normalize_digest_algorithm(digest_algorithm)
        attached = await asyncio.to_thread(self._sign_sync, credentials, content)
        _check_message_digest("cryptography", attached, digest)
        return attached


# ----------------------------------------------------------------------
# Factory
# ----------------------------------------------------------------------

def build_cms_signer(settings: Settings) -> CmsSigner:
    if settings.cms_engine == "cryptography":
        return InProcessCmsSigner()
    return OpenSslCmsSigner(
        binary=settings.openssl_binary,
        timeout_seconds=settings.signer_timeout_seconds,
    )
