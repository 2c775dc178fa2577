"""
Certificate metadata schemas.

These models carry descriptive information only. Key material never
appears here; it lives in `LoadedCertificate` for the duration of a
single signing call.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CertificateInfo(BaseModel):
    """
    Read-only view of a PKCS#12 signer certificate.

    Used by UI and notification code for expiry warnings.
    """

    model_config = ConfigDict(frozen=True)

    common_name: Optional[str] = Field(
        None,
        description="Subject CN of the signer certificate",
    )
    organization: Optional[str] = Field(
        None,
        description="Subject O of the signer certificate",
    )
    issuer: Optional[str] = Field(
        None,
        description="Issuer CN, falling back to issuer O",
    )
    not_before: datetime
    not_after: datetime
    is_expired: bool
    is_not_yet_valid: bool = False
    days_until_expiration: int = Field(
        ...,
        description="Whole days remaining before notAfter (floor)",
    )


class NoticeSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


class CertificateExpiryNotice(BaseModel):
    """
    Advisory notice raised when the signing certificate is close to,
    or past, its expiry date.
    """

    model_config = ConfigDict(frozen=True)

    type: str = "certificate_expiry"
    severity: NoticeSeverity
    message: str
    days_until_expiration: int
    expires_at: datetime


class CertificateStatusResponse(BaseModel):
    """Response body of GET /certificate."""

    certificate: CertificateInfo
    expiry_notice: Optional[CertificateExpiryNotice] = None
