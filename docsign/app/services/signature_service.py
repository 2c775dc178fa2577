"""
Document signing facade.

The strategy is chosen once, when the service is built:

- certificate path configured  -> CryptographicSignatureStrategy
- no certificate path          -> VisualSignatureStrategy
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from docsign.app.core.config import Settings
from docsign.app.schemas.signing import SignatureInfo
from docsign.app.services.cms_signer import CmsSigner
from docsign.app.services.strategies import (
    CryptographicSignatureStrategy,
    SignatureStrategy,
    select_strategy,
)

logger = logging.getLogger("docsign.signature_service")


class SignatureService:

    def __init__(
        self,
        certificate_path: Optional[str] = None,
        certificate_password: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        cms_signer: Optional[CmsSigner] = None,
    ):
        self.certificate_path = (certificate_path or "").strip() or None
        self.strategy: SignatureStrategy = select_strategy(
            self.certificate_path,
            certificate_password,
            settings=settings,
            cms_signer=cms_signer,
        )

        logger.info(
            "signature_strategy_selected",
            extra={"strategy": self.strategy.get_info().type},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        cms_signer: Optional[CmsSigner] = None,
    ) -> "SignatureService":
        return cls(
            settings.certificate_path,
            settings.certificate_password.get_secret_value(),
            settings=settings,
            cms_signer=cms_signer,
        )

    async def sign_bytes(self, pdf_bytes: bytes) -> bytes:
        """Sign an in-memory PDF with the selected strategy."""
        return await self.strategy.sign(pdf_bytes)

    async def sign_pdf(self, pdf_path: Union[str, Path]) -> Path:
        """
        Sign a PDF file.

        The signed copy is written next to the input as `<stem>_signed.pdf`
        and its path is returned. The input file is left untouched.
        """
        source = Path(pdf_path)
        pdf_bytes = await asyncio.to_thread(source.read_bytes)

        signed = await self.sign_bytes(pdf_bytes)

        target = source.with_name(f"{source.stem}_signed.pdf")
        await asyncio.to_thread(target.write_bytes, signed)

        logger.info(
            "signed_pdf_written",
            extra={
                "source": source.name,
                "target": target.name,
                "strategy": self.strategy.get_info().type,
            },
        )
        return target

    def get_signature_info(self) -> SignatureInfo:
        return self.strategy.get_info()

    def verify_certificate(self) -> bool:
        """True when the configured certificate exists and is not empty."""
        if not self.certificate_path:
            return False
        path = Path(self.certificate_path)
        return path.is_file() and path.stat().st_size > 0

    def is_crypto_configured(self) -> bool:
        return (
            isinstance(self.strategy, CryptographicSignatureStrategy)
            and self.verify_certificate()
        )
