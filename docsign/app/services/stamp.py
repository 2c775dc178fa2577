"""
Visual signature stamp.

A small bordered box with two text lines at the bottom-left of the last
page, rendered by pyHanko. The visual strategy draws it as a page stamp
in an incremental update (no cryptography involved); the cryptographic
strategy uses SIGNER_STYLE as the appearance of the signature widget.
"""

from __future__ import annotations

import io
from typing import Optional

from pyhanko.pdf_utils.layout import BoxConstraints, LayoutError
from pyhanko.pdf_utils.misc import PdfError
from pyhanko.pdf_utils.text import TextBoxStyle
from pyhanko.stamp import TextStamp, TextStampStyle

from docsign.app.core.errors import PdfPreparationError
from docsign.app.schemas.signing import StampBox
from docsign.app.services.placeholder import open_incremental

SIGNING_DATE_FORMAT = "%d/%m/%Y %H:%M"

VISUAL_BOX = StampBox(x=50, y=35, width=250, height=35)
SIGNER_BOX = StampBox(x=50, y=35, width=280, height=45)

VISUAL_STYLE = TextStampStyle(
    stamp_text="Digitally signed document\nSigning date: %(ts)s",
    timestamp_format=SIGNING_DATE_FORMAT,
    border_width=1,
    border_color=(0.5, 0.5, 0.5),
    text_box_style=TextBoxStyle(font_size=8),
)

# %(signer)s is filled in from the signature dictionary's /Name
SIGNER_STYLE = TextStampStyle(
    stamp_text="Digitally signed by: %(signer)s\nSigning date: %(ts)s",
    timestamp_format=SIGNING_DATE_FORMAT,
    border_width=1,
    border_color=(0.3, 0.5, 0.3),
    text_box_style=TextBoxStyle(font_size=9),
)


def stamp_pdf_bytes(
    pdf_bytes: bytes,
    style: TextStampStyle = VISUAL_STYLE,
    box: StampBox = VISUAL_BOX,
    text_params: Optional[dict] = None,
) -> bytes:
    """
    Return `pdf_bytes` plus an incremental update drawing the stamp on the
    last page. The original revision is left untouched.

    Raises:
        PdfPreparationError: the input is not a PDF, is encrypted, has no
            pages, or the stamp text cannot be laid out.
    """
    writer = open_incremental(pdf_bytes)
    stamp = TextStamp(
        writer,
        style,
        text_params=text_params,
        box=BoxConstraints(width=box.width, height=box.height),
    )
    try:
        stamp.apply(-1, box.x, box.y)
        output = io.BytesIO()
        writer.write(output)
    except (PdfError, LayoutError) as exc:
        raise PdfPreparationError(f"Failed to stamp PDF: {exc}") from exc
    return output.getvalue()
