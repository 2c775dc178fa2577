import asyncio
import io

import pytest
from asn1crypto import cms as asn1_cms, x509 as asn1_x509
from cryptography.hazmat.primitives import serialization
from pyhanko.pdf_utils.reader import PdfFileReader
from pyhanko.sign.validation import async_validate_pdf_signature
from pyhanko_certvalidator import ValidationContext

from docsign.app.core.config import Settings
from docsign.app.core.errors import CertificateNotFound, InvalidPassword
from docsign.app.services.cms import (
    CONTENT_TYPE_ATTR_OID,
    MESSAGE_DIGEST_ATTR_OID,
    SIGNED_DATA_OID,
    SIGNING_TIME_ATTR_OID,
    summarize,
)
from docsign.app.services.cms_signer import InProcessCmsSigner, OpenSslCmsSigner
from docsign.app.services.signature_service import SignatureService
from docsign.tests.fixtures.helpers import requires_openssl, signing_temp_dirs
from docsign.tests.fixtures.pdf_factory import text_pdf

pytestmark = pytest.mark.anyio


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _embedded_cms(pdf_bytes: bytes) -> bytes:
    reader = PdfFileReader(io.BytesIO(pdf_bytes))
    (embedded,) = reader.embedded_signatures
    raw = bytes(embedded.sig_object["/Contents"])
    return asn1_cms.ContentInfo.load(raw).dump()


async def _validate(pdf_bytes: bytes, bundle):
    root = asn1_x509.Certificate.load(
        bundle.certificate.public_bytes(serialization.Encoding.DER)
    )
    reader = PdfFileReader(io.BytesIO(pdf_bytes))
    (embedded,) = reader.embedded_signatures
    return await async_validate_pdf_signature(
        embedded,
        signer_validation_context=ValidationContext(trust_roots=[root]),
    )


def _service(bundle, **overrides) -> SignatureService:
    settings = Settings(
        certificate_path=str(bundle.path),
        certificate_password=bundle.password,
        **{"cms_engine": "cryptography", **overrides},
    )
    return SignatureService.from_settings(settings)


# ----------------------------------------------------------------------
# End to end
# ----------------------------------------------------------------------

async def test_signed_pdf_carries_a_valid_detached_signature(bundle):
    source = text_pdf(pages=3)

    signed = await _service(bundle).sign_bytes(source)

    assert signed.startswith(b"%PDF-")
    assert len(signed) > len(source)

    cms_der = _embedded_cms(signed)
    summary = summarize(cms_der)
    assert summary.content_type == SIGNED_DATA_OID
    assert summary.digest_algorithms == ("sha256",)
    assert summary.has_econtent is False
    for oid in (CONTENT_TYPE_ATTR_OID, SIGNING_TIME_ATTR_OID, MESSAGE_DIGEST_ATTR_OID):
        assert oid in summary.signed_attributes

    status = await _validate(signed, bundle)
    assert status.intact
    assert status.valid


@requires_openssl
async def test_openssl_engine_end_to_end(bundle):
    before = signing_temp_dirs()
    service = _service(bundle, cms_engine="openssl")
    assert isinstance(service.strategy.cms_signer, OpenSslCmsSigner)

    signed = await service.sign_bytes(text_pdf())

    status = await _validate(signed, bundle)
    assert status.intact
    assert status.valid
    assert summarize(_embedded_cms(signed)).has_econtent is False
    assert signing_temp_dirs() - before == set()


async def test_signing_a_signed_pdf_keeps_the_first_signature(bundle):
    service = _service(bundle)

    once = await service.sign_bytes(text_pdf())
    twice = await service.sign_bytes(once)

    assert twice.startswith(once)

    root = asn1_x509.Certificate.load(
        bundle.certificate.public_bytes(serialization.Encoding.DER)
    )
    reader = PdfFileReader(io.BytesIO(twice))
    signatures = reader.embedded_signatures
    assert [s.field_name for s in signatures] == ["Signature1", "Signature2"]
    for embedded in signatures:
        status = await async_validate_pdf_signature(
            embedded,
            signer_validation_context=ValidationContext(trust_roots=[root]),
        )
        assert status.intact
        assert status.valid


async def test_tampering_breaks_integrity(bundle):
    signed = await _service(bundle, visible_stamp=False).sign_bytes(text_pdf())

    # flip one byte of the binary comment after the header line
    position = signed.index(b"\n") + 2
    tampered = bytearray(signed)
    tampered[position] ^= 0x01
    tampered = bytes(tampered)

    status = await _validate(tampered, bundle)
    assert not status.intact


async def test_concurrent_signing_calls_are_independent(bundle):
    service = _service(bundle)
    sources = [text_pdf(text=f"Document {n}") for n in range(4)]

    results = await asyncio.gather(*(service.sign_bytes(s) for s in sources))

    for signed in results:
        status = await _validate(signed, bundle)
        assert status.intact and status.valid
    assert len({r for r in results}) == 4


async def test_sign_pdf_writes_sibling_file(bundle, tmp_path):
    source = tmp_path / "contract.pdf"
    original = text_pdf()
    source.write_bytes(original)

    target = await _service(bundle).sign_pdf(source)

    assert target == tmp_path / "contract_signed.pdf"
    assert target.read_bytes().startswith(b"%PDF-")
    assert source.read_bytes() == original


async def test_wrong_password_leaves_no_temp_dirs(bundle):
    before = signing_temp_dirs()
    service = SignatureService(
        str(bundle.path),
        "wrong",
        settings=Settings(cms_engine="openssl"),
    )

    with pytest.raises(InvalidPassword) as info:
        await service.sign_bytes(text_pdf())

    assert "password" in str(info.value).lower()
    assert signing_temp_dirs() - before == set()


async def test_missing_certificate_file(tmp_path):
    service = SignatureService(
        str(tmp_path / "absent.p12"),
        "pw",
        cms_signer=InProcessCmsSigner(),
    )

    with pytest.raises(CertificateNotFound):
        await service.sign_bytes(text_pdf())

    assert service.verify_certificate() is False
    assert service.is_crypto_configured() is False


# ----------------------------------------------------------------------
# Introspection
# ----------------------------------------------------------------------

def test_visual_service_info():
    service = SignatureService(None, None)
    info = service.get_signature_info()

    assert info.type == "visual"
    assert "visual" in info.details.lower()
    assert service.verify_certificate() is False
    assert service.is_crypto_configured() is False


def test_cryptographic_service_info(bundle):
    service = _service(bundle)
    info = service.get_signature_info()

    assert info.type == "cryptographic"
    assert "P12" in info.details
    assert service.verify_certificate() is True
    assert service.is_crypto_configured() is True


def test_empty_certificate_file_is_not_verified(tmp_path):
    empty = tmp_path / "empty.p12"
    empty.write_bytes(b"")

    service = SignatureService(str(empty), "pw", cms_signer=InProcessCmsSigner())

    assert service.get_signature_info().type == "cryptographic"
    assert service.verify_certificate() is False
    assert service.is_crypto_configured() is False


async def test_visual_service_signs_without_certificate():
    signed = await SignatureService().sign_bytes(text_pdf())

    assert signed.startswith(b"%PDF-")
    assert b"/ByteRange" not in signed
