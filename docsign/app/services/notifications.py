"""
Certificate expiry notices.

Notices are advisory: computing one must never break signing or the
caller that asked for it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from docsign.app.core.errors import CertificateNotFound, SignatureError
from docsign.app.schemas.certificate import (
    CertificateExpiryNotice,
    CertificateInfo,
    NoticeSeverity,
)
from docsign.app.services.certificates import inspect_certificate

logger = logging.getLogger("docsign.notifications")

DEFAULT_WARNING_DAYS = 30
DEFAULT_CRITICAL_DAYS = 7


def certificate_expiry_notice(
    info: CertificateInfo,
    *,
    warning_days: int = DEFAULT_WARNING_DAYS,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
) -> Optional[CertificateExpiryNotice]:
    """Return a notice when `info` is expired or within `warning_days`."""
    days = info.days_until_expiration

    if info.is_expired or days <= 0:
        return CertificateExpiryNotice(
            severity=NoticeSeverity.CRITICAL,
            message="The digital certificate has expired",
            days_until_expiration=days,
            expires_at=info.not_after,
        )

    if days > warning_days:
        return None

    severity = (
        NoticeSeverity.CRITICAL if days <= critical_days
        else NoticeSeverity.WARNING
    )
    unit = "day" if days == 1 else "days"

    return CertificateExpiryNotice(
        severity=severity,
        message=f"Certificate expires in {days} {unit}",
        days_until_expiration=days,
        expires_at=info.not_after,
    )


def check_certificate_expiry(
    certificate_path: Optional[str],
    certificate_password: Optional[str],
    *,
    warning_days: int = DEFAULT_WARNING_DAYS,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
    now: Optional[datetime] = None,
) -> Optional[CertificateExpiryNotice]:
    """
    Inspect the configured certificate and build its expiry notice.

    Returns None when no certificate is configured, when the file is
    missing, or when the certificate cannot be read (logged as a warning).
    """
    if not certificate_path or not certificate_path.strip():
        return None
    if not Path(certificate_path.strip()).is_file():
        return None

    try:
        info = inspect_certificate(
            certificate_path.strip(), certificate_password, now=now
        )
    except CertificateNotFound:
        return None
    except SignatureError as exc:
        logger.warning(
            "certificate_expiry_check_failed",
            extra={"error_type": type(exc).__name__},
        )
        return None

    notice = certificate_expiry_notice(
        info,
        warning_days=warning_days,
        critical_days=critical_days,
    )
    if notice is not None:
        logger.warning(
            "certificate_expiry_notice",
            extra={
                "severity": notice.severity.value,
                "days_until_expiration": notice.days_until_expiration,
            },
        )
    return notice
