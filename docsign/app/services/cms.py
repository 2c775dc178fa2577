"""
CMS (PKCS#7) SignedData handling.

CMS engines emit *attached* SignedData: the signed bytes are embedded as
eContent. PDF signatures with /SubFilter /adbe.pkcs7.detached require the
eContent to be absent, since the verifier supplies the byte-range content
itself.

`make_detached` is a pure structural transform over the typed asn1crypto
model:

    ContentInfo
      └─ [0] SignedData
           ├─ version                 (reused)
           ├─ digestAlgorithms        (reused)
           ├─ encapContentInfo        (rebuilt with eContentType only)
           ├─ [0] certificates        (reused)
           ├─ [1] crls                (reused, when present)
           └─ signerInfos             (reused)

Reused subtrees keep their original encoding byte for byte. The outer
containers are rebuilt, so indefinite-length (BER) envelopes produced by
streaming engines come out as definite-length DER.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from asn1crypto import cms, core

from docsign.app.core.errors import MalformedCms

logger = logging.getLogger("docsign.cms")

SIGNED_DATA_OID = "1.2.840.113549.1.7.2"
CONTENT_TYPE_ATTR_OID = "1.2.840.113549.1.9.3"
MESSAGE_DIGEST_ATTR_OID = "1.2.840.113549.1.9.4"
SIGNING_TIME_ATTR_OID = "1.2.840.113549.1.9.5"

REQUIRED_SIGNED_ATTRS = (
    CONTENT_TYPE_ATTR_OID,
    SIGNING_TIME_ATTR_OID,
    MESSAGE_DIGEST_ATTR_OID,
)

_PARSE_ERRORS = (ValueError, TypeError, KeyError, IndexError, OverflowError)


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

def load_signed_data(der: bytes) -> cms.ContentInfo:
    """
    Parse a ContentInfo wrapping SignedData.

    asn1crypto parses lazily; the fields the pipeline relies on are
    touched here so that malformed input fails now, as MalformedCms.
    """
    if not isinstance(der, (bytes, bytearray)) or not der:
        raise MalformedCms("input is empty or not bytes")

    try:
        content_info = cms.ContentInfo.load(bytes(der), strict=True)
        content_type = content_info["content_type"].dotted
        if content_type != SIGNED_DATA_OID:
            raise MalformedCms(
                f"content type {content_type} is not signedData"
            )

        signed_data = content_info["content"]
        if not isinstance(signed_data, cms.SignedData):
            raise MalformedCms("content is not a SignedData structure")

        signed_data["version"].native
        signed_data["digest_algorithms"].native
        signed_data["encap_content_info"]["content_type"].dotted
        signer_infos = signed_data["signer_infos"]
        for signer_info in signer_infos:
            signer_info["digest_algorithm"]["algorithm"].dotted
    except MalformedCms:
        raise
    except _PARSE_ERRORS as exc:
        raise MalformedCms(f"failed to parse DER: {exc}") from exc

    if len(signer_infos) < 1:
        raise MalformedCms("SignedData has no signerInfos")

    return content_info


def has_econtent(content_info: cms.ContentInfo) -> bool:
    encap = content_info["content"]["encap_content_info"]
    return not isinstance(encap["content"], core.Void)


# ----------------------------------------------------------------------
# Detaching
# ----------------------------------------------------------------------

def make_detached(attached_cms_der: bytes) -> bytes:
    """
    Remove eContent from an attached CMS SignedData.

    Idempotent: already-detached input is re-serialized to the same bytes.

    Raises:
        MalformedCms: the input is not a parseable ContentInfo/SignedData.
    """
    content_info = load_signed_data(attached_cms_der)
    signed_data = content_info["content"]
    encap = signed_data["encap_content_info"]

    # v1 SignedData carries a ContentInfo here, later versions an
    # EncapsulatedContentInfo; asn1crypto picks the class from the version
    fields = {
        "version": signed_data["version"],
        "digest_algorithms": signed_data["digest_algorithms"],
        "encap_content_info": type(encap)(
            {"content_type": encap["content_type"]}
        ),
        "signer_infos": signed_data["signer_infos"],
    }
    for optional in ("certificates", "crls"):
        value = signed_data[optional]
        if not isinstance(value, core.Void):
            fields[optional] = value

    try:
        detached = cms.ContentInfo(
            {
                "content_type": content_info["content_type"],
                "content": cms.SignedData(fields),
            }
        ).dump()
    except _PARSE_ERRORS as exc:
        raise MalformedCms(f"failed to re-encode SignedData: {exc}") from exc

    logger.debug(
        "cms_detached",
        extra={
            "input_length": len(attached_cms_der),
            "output_length": len(detached),
        },
    )
    return detached


# ----------------------------------------------------------------------
# Inspection
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CmsSummary:
    """Shape of a SignedData container, for checks and diagnostics."""

    content_type: str
    digest_algorithms: Tuple[str, ...]
    has_econtent: bool
    certificate_count: int
    signer_count: int
    signed_attributes: Tuple[str, ...]


def signed_attributes(content_info: cms.ContentInfo) -> Dict[str, List]:
    """Signed attributes of the first SignerInfo, keyed by dotted OID."""
    signer_info = content_info["content"]["signer_infos"][0]
    attrs = signer_info["signed_attrs"]
    if isinstance(attrs, core.Void):
        return {}
    return {
        attr["type"].dotted: [value for value in attr["values"]]
        for attr in attrs
    }


def message_digest(content_info: cms.ContentInfo) -> Optional[bytes]:
    values = signed_attributes(content_info).get(MESSAGE_DIGEST_ATTR_OID)
    if not values:
        return None
    return values[0].native


def summarize(der: bytes) -> CmsSummary:
    content_info = load_signed_data(der)
    signed_data = content_info["content"]
    certificates = signed_data["certificates"]

    try:
        return CmsSummary(
            content_type=content_info["content_type"].dotted,
            digest_algorithms=tuple(
                algo["algorithm"].native
                for algo in signed_data["digest_algorithms"]
            ),
            has_econtent=has_econtent(content_info),
            certificate_count=(
                0 if isinstance(certificates, core.Void) else len(certificates)
            ),
            signer_count=len(signed_data["signer_infos"]),
            signed_attributes=tuple(signed_attributes(content_info)),
        )
    except _PARSE_ERRORS as exc:
        raise MalformedCms(f"failed to inspect SignedData: {exc}") from exc
