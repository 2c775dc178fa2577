import logging
from datetime import datetime, timedelta, timezone

import pytest

from docsign.app.schemas.certificate import CertificateInfo, NoticeSeverity
from docsign.app.services.notifications import (
    certificate_expiry_notice,
    check_certificate_expiry,
)
from docsign.tests.fixtures.cert_factory import write_p12


NOW = datetime(2030, 6, 1, tzinfo=timezone.utc)


def _info(days: int, *, expired: bool = False) -> CertificateInfo:
    return CertificateInfo(
        common_name="Test Signer",
        not_before=NOW - timedelta(days=365),
        not_after=NOW + timedelta(days=days),
        is_expired=expired,
        days_until_expiration=days,
    )


@pytest.mark.parametrize(
    "days, expired, severity, message",
    [
        (-3, True, NoticeSeverity.CRITICAL, "The digital certificate has expired"),
        (0, False, NoticeSeverity.CRITICAL, "The digital certificate has expired"),
        (1, False, NoticeSeverity.CRITICAL, "Certificate expires in 1 day"),
        (7, False, NoticeSeverity.CRITICAL, "Certificate expires in 7 days"),
        (8, False, NoticeSeverity.WARNING, "Certificate expires in 8 days"),
        (30, False, NoticeSeverity.WARNING, "Certificate expires in 30 days"),
    ],
)
def test_notice_thresholds(days, expired, severity, message):
    notice = certificate_expiry_notice(_info(days, expired=expired))

    assert notice is not None
    assert notice.type == "certificate_expiry"
    assert notice.severity == severity
    assert notice.message == message
    assert notice.days_until_expiration == days
    assert notice.expires_at == NOW + timedelta(days=days)


def test_no_notice_outside_warning_window():
    assert certificate_expiry_notice(_info(31)) is None


def test_custom_thresholds():
    notice = certificate_expiry_notice(
        _info(50), warning_days=60, critical_days=50
    )

    assert notice.severity == NoticeSeverity.CRITICAL


def test_check_returns_none_without_configuration():
    assert check_certificate_expiry(None, None) is None
    assert check_certificate_expiry("  ", "pw") is None


def test_check_returns_none_for_missing_file(tmp_path):
    assert check_certificate_expiry(str(tmp_path / "missing.p12"), "pw") is None


def test_check_reports_expired_certificate(tmp_path):
    expired = write_p12(tmp_path, expired=True)

    notice = check_certificate_expiry(str(expired.path), expired.password)

    assert notice.severity == NoticeSeverity.CRITICAL
    assert notice.message == "The digital certificate has expired"


def test_check_reports_soon_expiring_certificate(tmp_path):
    bundle = write_p12(tmp_path, valid_days=10)

    notice = check_certificate_expiry(str(bundle.path), bundle.password)

    assert notice.severity == NoticeSeverity.WARNING
    assert notice.days_until_expiration == 10


def test_check_is_quiet_for_healthy_certificate(bundle):
    assert check_certificate_expiry(str(bundle.path), bundle.password) is None


def test_check_swallows_bad_password_with_warning(bundle, caplog):
    with caplog.at_level(logging.WARNING, logger="docsign.notifications"):
        notice = check_certificate_expiry(str(bundle.path), "wrong")

    assert notice is None
    assert any(
        record.getMessage() == "certificate_expiry_check_failed"
        for record in caplog.records
    )
