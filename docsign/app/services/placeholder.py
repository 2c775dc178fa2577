"""
Signature placeholder reservation and byte-range digesting.

The preparer appends an incremental update to the input PDF with pyHanko:
a new signature field whose value dictionary carries a zero-filled
/Contents hex string of a fixed size, plus the final /ByteRange.

Design guarantees:
- Incremental update only; the original revision is kept byte for byte,
  so signatures already in the document stay intact
- The returned SignaturePlaceholder is the only byte-range value used
  afterwards (digest and embedding share it)
- No content rewriting or reserialization
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional, Sequence

from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.pdf_utils.misc import PdfError
from pyhanko.sign import signers
from pyhanko.sign.fields import SigFieldSpec, SigSeedSubFilter
from pyhanko.sign.general import SigningError
from pyhanko.stamp import TextStampStyle

from docsign.app.core.errors import PdfPreparationError
from docsign.app.schemas.signing import (
    PreparedPdf,
    SignatureMetadata,
    SignaturePlaceholder,
    StampBox,
)
from docsign.app.utils.hashing import compute_byte_range_digest

logger = logging.getLogger("docsign.placeholder")

# 16 KiB of CMS, written as hex
DEFAULT_RESERVED_LENGTH = 32768

# Size of the dummy signature value used while laying out the field; the
# real container is produced later by a CmsSigner.
_DUMMY_SIGNATURE_LENGTH = 256


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def open_incremental(pdf_bytes: bytes) -> IncrementalPdfFileWriter:
    """
    Open `pdf_bytes` for an incremental update.

    Raises:
        PdfPreparationError: the input is not a PDF, is encrypted or has
            no pages.
    """
    try:
        writer = IncrementalPdfFileWriter(io.BytesIO(pdf_bytes))
        if writer.prev.encrypted:
            raise PdfPreparationError(
                "Encrypted PDFs cannot be prepared for signing."
            )
        page_count = int(writer.root["/Pages"]["/Count"])
    except PdfPreparationError:
        raise
    except (PdfError, KeyError, ValueError) as exc:
        raise PdfPreparationError(f"Failed to open PDF: {exc}") from exc

    if page_count == 0:
        raise PdfPreparationError("PDF has no pages.")
    return writer


def _existing_field_names(writer: IncrementalPdfFileWriter) -> set:
    try:
        fields = writer.root["/AcroForm"]["/Fields"]
    except KeyError:
        return set()
    names = set()
    for field_ref in fields:
        title = field_ref.get_object().get("/T")
        if title is not None:
            names.add(str(title))
    return names


def _unique_field_name(requested: str, taken: set) -> str:
    if requested not in taken:
        return requested
    base = requested.rstrip("0123456789") or "Signature"
    index = 1
    while f"{base}{index}" in taken:
        index += 1
    return f"{base}{index}"


def _field_spec(
    field_name: str,
    appearance: Optional[StampBox],
) -> SigFieldSpec:
    if appearance is None:
        return SigFieldSpec(sig_field_name=field_name)
    return SigFieldSpec(
        sig_field_name=field_name,
        on_page=-1,
        box=appearance.as_rect(),
    )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

async def prepare_placeholder(
    pdf_bytes: bytes,
    *,
    reserved_length: int = DEFAULT_RESERVED_LENGTH,
    metadata: Optional[SignatureMetadata] = None,
    stamp_style: Optional[TextStampStyle] = None,
    stamp_box: Optional[StampBox] = None,
) -> PreparedPdf:
    """
    Reserve a zero-filled signature placeholder of `reserved_length` hex
    characters and record the byte range that excludes it.

    When `stamp_style` and `stamp_box` are both given, the field is visible
    on the last page and rendered with that style; `%(signer)s` and
    `%(ts)s` in the stamp text resolve to the signer name and signing time.

    Raises:
        PdfPreparationError: the input is not a PDF, is encrypted, has no
            pages, or pyHanko refuses to add the field.
    """
    if reserved_length <= 0 or reserved_length % 2:
        raise ValueError(
            f"reserved_length must be a positive even number, got {reserved_length}"
        )

    metadata = metadata or SignatureMetadata()
    writer = await asyncio.to_thread(open_incremental, pdf_bytes)
    field_name = _unique_field_name(
        metadata.field_name, _existing_field_names(writer)
    )
    appearance = stamp_box if stamp_style is not None else None

    pdf_signer = signers.PdfSigner(
        signers.PdfSignatureMetadata(
            field_name=field_name,
            md_algorithm="sha256",
            subfilter=SigSeedSubFilter.ADOBE_PKCS7_DETACHED,
            # the widget appearance needs a name; there is no certificate yet
            name=metadata.signer_name or "Signer",
            reason=metadata.reason,
            location=metadata.location,
            contact_info=metadata.contact_info,
        ),
        # the CMS container is produced outside pyHanko
        signer=signers.ExternalSigner(
            signing_cert=None,
            cert_registry=None,
            signature_value=_DUMMY_SIGNATURE_LENGTH,
        ),
        stamp_style=stamp_style,
        new_field_spec=_field_spec(field_name, appearance),
    )

    try:
        digest_state, _, output = await pdf_signer.async_digest_doc_for_signing(
            writer,
            bytes_reserved=reserved_length,
            output=io.BytesIO(),
        )
    except (PdfError, SigningError) as exc:
        raise PdfPreparationError(
            f"Failed to reserve a signature placeholder: {exc}"
        ) from exc

    prepared_bytes = output.getvalue()
    start = digest_state.reserved_region_start
    end = digest_state.reserved_region_end
    placeholder = SignaturePlaceholder(
        byte_range=(0, start, end, len(prepared_bytes) - end),
        reserved_length=reserved_length,
    )

    logger.info(
        "placeholder_reserved",
        extra={
            "field_name": field_name,
            "byte_range": list(placeholder.byte_range),
            "reserved_length": reserved_length,
            "visible": appearance is not None,
        },
    )

    return PreparedPdf(
        pdf_bytes=prepared_bytes,
        placeholder=placeholder,
        digest_state=digest_state,
    )


def compute_digest(
    patched_pdf_bytes: bytes,
    byte_range: Sequence[int],
) -> bytes:
    """
    SHA-256 over exactly the bytes inside `byte_range`, in order.

    `byte_range` must be the value recorded by `prepare_placeholder`.
    """
    return compute_byte_range_digest(patched_pdf_bytes, byte_range, "sha256")
