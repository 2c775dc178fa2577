import hashlib
import io
import re

import pikepdf
import pytest

from docsign.app.core.errors import PdfPreparationError
from docsign.app.schemas.signing import SignatureMetadata, StampBox
from docsign.app.services.placeholder import (
    DEFAULT_RESERVED_LENGTH,
    compute_digest,
    prepare_placeholder,
)
from docsign.app.services.stamp import SIGNER_BOX, SIGNER_STYLE
from docsign.tests.fixtures.pdf_factory import (
    encrypted_pdf,
    minimal_valid_pdf,
    pdf_with_signature_field,
    text_pdf,
)

pytestmark = pytest.mark.anyio


def _recorded_byte_range(data: bytes):
    match = re.search(rb"/ByteRange\s*\[\s*(\d+)\s+(\d+)\s+(\d+)\s+(\d+)\s*\]", data)
    assert match is not None
    return tuple(int(v) for v in match.groups())


async def test_byte_range_brackets_the_zero_filled_placeholder():
    prepared = await prepare_placeholder(text_pdf(pages=2), reserved_length=4096)
    off1, len1, off2, len2 = prepared.byte_range
    data = prepared.pdf_bytes

    assert off1 == 0
    assert off2 + len2 == len(data)
    assert data[len1:off2] == b"<" + b"0" * 4096 + b">"
    assert off2 - len1 == 4096 + 2


async def test_byte_range_written_into_the_document_matches():
    prepared = await prepare_placeholder(text_pdf(), reserved_length=4096)

    assert _recorded_byte_range(prepared.pdf_bytes) == prepared.byte_range


async def test_default_reserved_length():
    prepared = await prepare_placeholder(text_pdf())

    assert prepared.reserved_length == DEFAULT_RESERVED_LENGTH
    off1, len1, off2, _ = prepared.byte_range
    assert off2 - len1 - 2 == DEFAULT_RESERVED_LENGTH


async def test_original_revision_is_kept_byte_for_byte():
    source = text_pdf(pages=2)

    prepared = await prepare_placeholder(source, reserved_length=2048)

    assert prepared.pdf_bytes.startswith(source)
    assert len(prepared.pdf_bytes) > len(source)


async def test_digest_covers_exactly_the_two_spans():
    prepared = await prepare_placeholder(text_pdf(), reserved_length=2048)
    off1, len1, off2, len2 = prepared.byte_range
    data = prepared.pdf_bytes

    expected = hashlib.sha256(
        data[off1:off1 + len1] + data[off2:off2 + len2]
    ).digest()

    assert compute_digest(data, prepared.byte_range) == expected
    assert len(expected) == 32


async def test_digest_matches_the_one_recorded_while_writing():
    prepared = await prepare_placeholder(text_pdf(), reserved_length=2048)

    assert prepared.document_digest == compute_digest(
        prepared.pdf_bytes, prepared.byte_range
    )


async def test_digest_ignores_placeholder_contents():
    prepared = await prepare_placeholder(text_pdf(), reserved_length=2048)
    _, len1, off2, _ = prepared.byte_range

    altered = bytearray(prepared.pdf_bytes)
    altered[len1 + 1:off2 - 1] = b"f" * 2048

    assert compute_digest(bytes(altered), prepared.byte_range) == compute_digest(
        prepared.pdf_bytes, prepared.byte_range
    )


async def test_signature_dictionary_entries():
    metadata = SignatureMetadata(
        field_name="Signature1",
        reason="Case filing",
        location="Madrid",
        contact_info="Jane Roe",
        signer_name="Jane Roe",
    )

    prepared = await prepare_placeholder(
        text_pdf(), reserved_length=2048, metadata=metadata
    )

    with pikepdf.open(io.BytesIO(prepared.pdf_bytes)) as pdf:
        fields = pdf.Root.AcroForm.Fields
        assert len(fields) == 1
        widget = fields[0]
        sig = widget.V

        assert str(widget.T) == "Signature1"
        assert widget.FT == pikepdf.Name.Sig
        assert sig.Type == pikepdf.Name.Sig
        assert sig.Filter == pikepdf.Name("/Adobe.PPKLite")
        assert sig.SubFilter == pikepdf.Name("/adbe.pkcs7.detached")
        assert str(sig.Reason) == "Case filing"
        assert str(sig.Location) == "Madrid"
        assert str(sig.Name) == "Jane Roe"
        assert str(sig.ContactInfo) == "Jane Roe"
        assert str(sig.M).startswith("D:")
        assert int(pdf.Root.AcroForm.SigFlags) == 3
        assert widget.objgen in {a.objgen for a in pdf.pages[-1].obj.Annots}


async def test_empty_optional_entries_are_omitted():
    prepared = await prepare_placeholder(text_pdf(), reserved_length=2048)

    with pikepdf.open(io.BytesIO(prepared.pdf_bytes)) as pdf:
        sig = pdf.Root.AcroForm.Fields[0].V
        assert "/Reason" not in sig
        assert "/Location" not in sig


async def test_field_is_invisible_without_a_stamp_style():
    prepared = await prepare_placeholder(text_pdf(), reserved_length=2048)

    with pikepdf.open(io.BytesIO(prepared.pdf_bytes)) as pdf:
        widget = pdf.Root.AcroForm.Fields[0]
        assert [float(v) for v in widget.Rect] == [0, 0, 0, 0]


async def test_visible_field_sits_on_the_last_page_with_an_appearance():
    prepared = await prepare_placeholder(
        text_pdf(pages=3),
        reserved_length=2048,
        metadata=SignatureMetadata(signer_name="Jane Roe"),
        stamp_style=SIGNER_STYLE,
        stamp_box=SIGNER_BOX,
    )

    with pikepdf.open(io.BytesIO(prepared.pdf_bytes)) as pdf:
        widget = pdf.Root.AcroForm.Fields[0]
        assert [float(v) for v in widget.Rect] == list(SIGNER_BOX.as_rect())
        assert widget.objgen in {a.objgen for a in pdf.pages[-1].obj.Annots}
        assert "/Annots" not in pdf.pages[0].obj
        appearance = widget.AP.N.read_bytes()

    assert b"Digitally signed by: Jane Roe" in appearance


async def test_stamp_box_without_a_style_stays_invisible():
    prepared = await prepare_placeholder(
        text_pdf(),
        reserved_length=2048,
        stamp_box=StampBox(x=10, y=10, width=100, height=20),
    )

    with pikepdf.open(io.BytesIO(prepared.pdf_bytes)) as pdf:
        widget = pdf.Root.AcroForm.Fields[0]
        assert [float(v) for v in widget.Rect] == [0, 0, 0, 0]


async def test_existing_field_name_is_not_reused():
    prepared = await prepare_placeholder(
        pdf_with_signature_field("Signature1"), reserved_length=2048
    )

    with pikepdf.open(io.BytesIO(prepared.pdf_bytes)) as pdf:
        names = [str(f.T) for f in pdf.Root.AcroForm.Fields]

    assert names == ["Signature1", "Signature2"]


def test_stamp_box_rect():
    box = StampBox(x=50, y=35, width=280, height=45)

    assert box.as_rect() == (50, 35, 330, 80)


@pytest.mark.parametrize("reserved_length", [0, -2, 2047])
async def test_rejects_invalid_reserved_length(reserved_length):
    with pytest.raises(ValueError):
        await prepare_placeholder(text_pdf(), reserved_length=reserved_length)


async def test_rejects_non_pdf_input():
    with pytest.raises(PdfPreparationError):
        await prepare_placeholder(b"definitely not a pdf", reserved_length=2048)


async def test_rejects_encrypted_pdf():
    with pytest.raises(PdfPreparationError, match="Encrypted"):
        await prepare_placeholder(encrypted_pdf(), reserved_length=2048)


async def test_rejects_pdf_without_pages():
    with pytest.raises(PdfPreparationError):
        await prepare_placeholder(minimal_valid_pdf(), reserved_length=2048)
