"""
Cryptographic primitives for byte-range integrity.

This module hashes bytes, and bytes only. It does not parse PDF syntax;
the caller supplies the /ByteRange that was recorded when the signature
placeholder was reserved.
"""

import hashlib
from typing import Sequence, Union


SUPPORTED_DIGESTS = {"sha256"}


def normalize_digest_algorithm(name: str) -> str:
    """Map 'SHA-256', 'sha256', 'Sha_256' to the canonical 'sha256'."""
    canonical = name.lower().replace("-", "").replace("_", "")
    if canonical not in SUPPORTED_DIGESTS:
        raise ValueError(f"Unsupported digest algorithm: {name}")
    return canonical


def iter_byte_range(
    data: Union[bytes, bytearray, memoryview],
    byte_range: Sequence[int],
):
    """
    Yield the covered slices of `data`, in order.

    Raises:
        ValueError: if the byte range is not four non-negative integers
            describing two ordered, in-bounds spans.
    """
    if len(byte_range) != 4:
        raise ValueError(
            f"ByteRange must have exactly four entries, got {len(byte_range)}"
        )

    off1, len1, off2, len2 = (int(v) for v in byte_range)
    if min(off1, len1, off2, len2) < 0:
        raise ValueError(f"ByteRange entries must be non-negative: {byte_range}")
    if off1 + len1 > off2:
        raise ValueError(f"ByteRange spans overlap: {byte_range}")
    if off2 + len2 > len(data):
        raise ValueError(
            f"ByteRange {list(byte_range)} exceeds document length {len(data)}"
        )

    view = memoryview(data)
    yield view[off1:off1 + len1]
    yield view[off2:off2 + len2]


def byte_range_content(
    data: Union[bytes, bytearray],
    byte_range: Sequence[int],
) -> bytes:
    """Concatenate the covered bytes (the signed pre-image)."""
    return b"".join(bytes(chunk) for chunk in iter_byte_range(data, byte_range))


def compute_byte_range_digest(
    data: Union[bytes, bytearray],
    byte_range: Sequence[int],
    digest_algorithm: str = "sha256",
) -> bytes:
    """
    Compute the raw digest over exactly the bytes inside `byte_range`.

    The placeholder gap between the two spans is never hashed.
    """
    hasher = hashlib.new(normalize_digest_algorithm(digest_algorithm))
    for chunk in iter_byte_range(data, byte_range):
        hasher.update(chunk)
    return hasher.digest()
