"""
Signature strategies.

Exactly two variants exist and one is chosen per SignatureService, at
construction time, from whether a certificate path is configured:

- VisualSignatureStrategy: non-cryptographic stamp on the last page.
- CryptographicSignatureStrategy: PKCS#12 load -> placeholder -> digest
  -> CMS engine -> detach -> embed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from docsign.app.core.config import Settings
from docsign.app.schemas.signing import SignatureInfo, SignatureMetadata
from docsign.app.services.certificates import load_certificate
from docsign.app.services.cms import make_detached
from docsign.app.services.cms_signer import CmsSigner, build_cms_signer
from docsign.app.services.embedder import embed_signature
from docsign.app.services.placeholder import compute_digest, prepare_placeholder
from docsign.app.services.stamp import (
    SIGNER_BOX,
    SIGNER_STYLE,
    VISUAL_BOX,
    VISUAL_STYLE,
    stamp_pdf_bytes,
)
from docsign.app.utils.hashing import byte_range_content

logger = logging.getLogger("docsign.strategies")


class SignatureStrategy(Protocol):
    """Turns PDF bytes into signed PDF bytes."""

    async def sign(self, pdf_bytes: bytes) -> bytes:
        ...

    def get_info(self) -> SignatureInfo:
        ...


# ----------------------------------------------------------------------
# Visual
# ----------------------------------------------------------------------

class VisualSignatureStrategy:
    """
    Visual signature: a "digitally signed" box with the signing date.

    This is NOT a cryptographic signature.
    """

    async def sign(self, pdf_bytes: bytes) -> bytes:
        return await asyncio.to_thread(
            stamp_pdf_bytes, pdf_bytes, VISUAL_STYLE, VISUAL_BOX
        )

    def get_info(self) -> SignatureInfo:
        return SignatureInfo(
            type="visual",
            details="Visual signature (text indicator, not cryptographic)",
        )


# ----------------------------------------------------------------------
# Cryptographic
# ----------------------------------------------------------------------

class CryptographicSignatureStrategy:
    """
    Cryptographic signature with a PKCS#12 certificate, embedded as a
    detached CMS (/adbe.pkcs7.detached).
    """

    def __init__(
        self,
        certificate_path: str,
        certificate_password: Optional[str],
        *,
        settings: Optional[Settings] = None,
        cms_signer: Optional[CmsSigner] = None,
    ):
        self.settings = settings or Settings()
        self.certificate_path = certificate_path.strip()
        self.certificate_password = certificate_password or ""
        self.cms_signer = cms_signer or build_cms_signer(self.settings)

    async def sign(self, pdf_bytes: bytes) -> bytes:
        settings = self.settings

        credentials = await asyncio.to_thread(
            load_certificate,
            self.certificate_path,
            self.certificate_password,
            include_directory_ca_certs=settings.include_directory_ca_certs,
        )
        with credentials:
            signer_name = credentials.info().common_name or "Signer"

            prepared = await prepare_placeholder(
                pdf_bytes,
                reserved_length=settings.reserved_hex_length,
                metadata=SignatureMetadata(
                    field_name=settings.signature_field_name,
                    reason=settings.signature_reason or None,
                    location=settings.signature_location or None,
                    contact_info=signer_name,
                    signer_name=signer_name,
                ),
                stamp_style=SIGNER_STYLE if settings.visible_stamp else None,
                stamp_box=SIGNER_BOX,
            )

            digest = compute_digest(prepared.pdf_bytes, prepared.byte_range)

            attached = await self.cms_signer.sign_digest(
                digest,
                credentials,
                content=byte_range_content(
                    prepared.pdf_bytes, prepared.byte_range
                ),
                digest_algorithm="sha256",
            )

        detached = make_detached(attached)

        signed = embed_signature(prepared, detached)

        logger.info(
            "document_signed",
            extra={
                "engine": self.cms_signer.name,
                "byte_range": list(prepared.byte_range),
                "cms_length": len(detached),
            },
        )
        return signed

    def get_info(self) -> SignatureInfo:
        return SignatureInfo(
            type="cryptographic",
            details=f"P12 cryptographic signature ({self.certificate_path})",
        )


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def select_strategy(
    certificate_path: Optional[str],
    certificate_password: Optional[str],
    *,
    settings: Optional[Settings] = None,
    cms_signer: Optional[CmsSigner] = None,
) -> SignatureStrategy:
    """Cryptographic when a non-blank certificate path is given, else visual."""
    if certificate_path and certificate_path.strip():
        return CryptographicSignatureStrategy(
            certificate_path,
            certificate_password,
            settings=settings,
            cms_signer=cms_signer,
        )
    return VisualSignatureStrategy()
