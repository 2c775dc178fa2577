"""
Embedding of a detached CMS container into a reserved placeholder.
"""

import io
import logging

from pyhanko.sign.general import SigningError

from docsign.app.core.errors import PlaceholderTooSmall
from docsign.app.schemas.signing import PreparedPdf

logger = logging.getLogger("docsign.embedder")


def embed_signature(prepared: PreparedPdf, detached_cms_der: bytes) -> bytes:
    """
    Write the hex-encoded CMS into the placeholder reserved for `prepared`,
    right-padded with '0'.

    The document length never changes, so the recorded byte range stays
    valid for any later verifier.

    Raises:
        PlaceholderTooSmall: the hex-encoded CMS exceeds the reserved length.
    """
    output = io.BytesIO(prepared.pdf_bytes)
    try:
        prepared.digest_state.fill_with_cms(output, detached_cms_der)
    except SigningError as exc:
        raise PlaceholderTooSmall(
            required=2 * len(detached_cms_der),
            available=prepared.reserved_length,
        ) from exc

    logger.info(
        "signature_embedded",
        extra={
            "cms_length": len(detached_cms_der),
            "reserved_length": prepared.reserved_length,
        },
    )
    return output.getvalue()
