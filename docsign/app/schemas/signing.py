"""
Value types shared by the signing pipeline.

`SignaturePlaceholder` is the single source of truth for the byte range:
the preparer creates it, and both the digest and the embedder consume the
same instance. It is never recomputed between reservation and embedding.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pyhanko.sign.signers.pdf_byterange import PreparedByteRangeDigest


ByteRange = Tuple[int, int, int, int]


@dataclass(frozen=True)
class SignaturePlaceholder:
    """
    Location of the reserved /Contents hex field in the raw PDF bytes.

    byte_range follows the PDF /ByteRange convention:
    [offset1, length1, offset2, length2]. The gap between the two ranges
    is exactly the placeholder including its '<' and '>' delimiters.
    """

    byte_range: ByteRange
    reserved_length: int


@dataclass(frozen=True)
class PreparedPdf:
    """
    PDF bytes carrying an empty, zero-filled signature placeholder, plus
    the pyHanko state needed to fill it in later.
    """

    pdf_bytes: bytes
    placeholder: SignaturePlaceholder
    digest_state: PreparedByteRangeDigest

    @property
    def byte_range(self) -> ByteRange:
        return self.placeholder.byte_range

    @property
    def reserved_length(self) -> int:
        return self.placeholder.reserved_length

    @property
    def document_digest(self) -> bytes:
        return self.digest_state.document_digest


@dataclass(frozen=True)
class StampBox:
    """Position and size of a stamp on the page, in PDF user units."""

    x: float
    y: float
    width: float
    height: float

    def as_rect(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)


@dataclass(frozen=True)
class SignatureMetadata:
    """Descriptive entries written into the signature dictionary."""

    field_name: str = "Signature1"
    reason: Optional[str] = None
    location: Optional[str] = None
    contact_info: Optional[str] = None
    signer_name: Optional[str] = None


class SignatureInfo(BaseModel):
    """Describes the strategy a SignatureService was built with."""

    model_config = ConfigDict(frozen=True)

    type: Literal["visual", "cryptographic"]
    details: str
