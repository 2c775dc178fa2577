"""
PKCS#12 certificate loading and inspection.

Certificates are loaded fresh for every signing or inspection call and are
never cached. Decrypted key material lives only inside a `LoadedCertificate`
and is dropped when its `with` block exits.

Nothing in this module writes to disk.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from pyhanko.keys import load_cert_from_pemder

from docsign.app.core.errors import (
    CertificateNotFound,
    InvalidCertificate,
    InvalidPassword,
)
from docsign.app.schemas.certificate import CertificateInfo

logger = logging.getLogger("docsign.certificates")

PathLike = Union[str, Path]

CA_CERT_SUFFIXES = {".cer", ".crt", ".pem"}

# readable only through the OpenSSL 3 legacy provider
LEGACY_PKCS12_CIPHERS = ("rc2", "rc4", "des")

_SECONDS_PER_DAY = 24 * 60 * 60


# ----------------------------------------------------------------------
# Loaded credentials
# ----------------------------------------------------------------------

@dataclass
class LoadedCertificate:
    """
    Private key, signer certificate and chain for one signing call.

    Use as a context manager; the private key reference is released on
    exit regardless of how the block ends.
    """

    private_key: Optional[object]
    certificate: x509.Certificate
    chain: List[x509.Certificate] = field(default_factory=list)
    source_path: str = ""

    def __enter__(self) -> "LoadedCertificate":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def release(self) -> None:
        self.private_key = None

    def require_private_key(self):
        if self.private_key is None:
            raise InvalidCertificate(
                "Private key material has already been released"
            )
        return self.private_key

    def info(self, now: Optional[datetime] = None) -> CertificateInfo:
        return describe_certificate(self.certificate, now=now)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _name_attribute(name: x509.Name, oid) -> Optional[str]:
    attrs = name.get_attributes_for_oid(oid)
    if not attrs:
        return None
    value = attrs[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


def _read_bundle(path: PathLike) -> bytes:
    bundle_path = Path(path)
    if not bundle_path.is_file():
        raise CertificateNotFound(str(path))
    try:
        return bundle_path.read_bytes()
    except FileNotFoundError as exc:
        raise CertificateNotFound(str(path)) from exc
    except OSError as exc:
        raise InvalidCertificate(
            f"Failed to read certificate file: {exc}. "
            "Check the file permissions."
        ) from exc


def _check_pkcs12_structure(data: bytes) -> asn1_pkcs12.Pfx:
    """
    Reject input that is not a PFX container at all, so that a decrypt
    failure on a well-formed bundle can be reported as a password problem.
    """
    try:
        pfx = asn1_pkcs12.Pfx.load(data, strict=True)
        pfx["version"].native
        pfx["auth_safe"]["content_type"].native
    except (ValueError, TypeError, KeyError) as exc:
        raise InvalidCertificate(
            f"File is not a PKCS#12 bundle: {exc}"
        ) from exc
    return pfx


def _legacy_ciphers(pfx: asn1_pkcs12.Pfx) -> List[str]:
    """
    Pre-AES ciphers protecting the bundle's safe contents or private key.

    OpenSSL 3 only reads these through its legacy provider; without it a
    correct password still fails to decrypt the bundle.
    """
    found: List[str] = []

    def note(algorithm) -> None:
        cipher = algorithm.encryption_cipher
        if cipher in LEGACY_PKCS12_CIPHERS and cipher not in found:
            found.append(cipher)

    try:
        for content_info in pfx.authenticated_safe:
            content_type = content_info["content_type"].native
            if content_type == "encrypted_data":
                note(
                    content_info["content"]["encrypted_content_info"][
                        "content_encryption_algorithm"
                    ]
                )
            elif content_type == "data":
                safe_contents = asn1_pkcs12.SafeContents.load(
                    content_info["content"].native
                )
                for bag in safe_contents:
                    if bag["bag_id"].native == "pkcs8_shrouded_key_bag":
                        note(bag["bag_value"]["encryption_algorithm"])
    except (ValueError, TypeError, KeyError) as exc:
        logger.debug(
            "pkcs12_cipher_scan_incomplete",
            extra={"error_type": type(exc).__name__},
        )
    return found


def _select_signer_certificate(
    private_key,
    certificate: Optional[x509.Certificate],
    additional: Iterable[x509.Certificate],
) -> x509.Certificate:
    """Pick the certificate whose public key matches the private key."""
    key_spki = _spki(private_key.public_key())

    candidates = ([certificate] if certificate is not None else []) + list(
        additional
    )
    for candidate in candidates:
        if _spki(candidate.public_key()) == key_spki:
            return candidate

    raise InvalidCertificate(
        "No certificate in the PKCS#12 bundle matches its private key."
    )


def _dedupe(
    certs: Iterable[x509.Certificate],
    exclude: Iterable[x509.Certificate] = (),
) -> List[x509.Certificate]:
    seen = {c.public_bytes(serialization.Encoding.DER) for c in exclude}
    result: List[x509.Certificate] = []
    for cert in certs:
        der = cert.public_bytes(serialization.Encoding.DER)
        if der in seen:
            continue
        seen.add(der)
        result.append(cert)
    return result


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load_directory_ca_certs(cert_dir: PathLike) -> List[x509.Certificate]:
    """
    Load CA certificates stored next to a PKCS#12 bundle.

    Files ending in .cer, .crt or .pem are read as PEM or DER. Unreadable
    files are skipped with a warning; the chain is optional.
    """
    directory = Path(cert_dir)
    certs: List[x509.Certificate] = []

    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        logger.warning(
            "ca_directory_unreadable",
            extra={"directory": str(directory), "error_type": type(exc).__name__},
        )
        return certs

    for entry in entries:
        if entry.suffix.lower() not in CA_CERT_SUFFIXES or not entry.is_file():
            continue
        try:
            asn1_cert = load_cert_from_pemder(str(entry))
            certs.append(x509.load_der_x509_certificate(asn1_cert.dump()))
        except (ValueError, TypeError, OSError) as exc:
            logger.warning(
                "ca_certificate_skipped",
                extra={"file": entry.name, "error_type": type(exc).__name__},
            )

    return certs


def load_certificate(
    path: PathLike,
    password: Optional[str],
    *,
    include_directory_ca_certs: bool = False,
) -> LoadedCertificate:
    """
    Open a PKCS#12 bundle.

    Raises:
        CertificateNotFound: the file does not exist.
        InvalidPassword: the bundle cannot be decrypted with `password`.
        InvalidCertificate: the file is not PKCS#12, or holds no private
            key or no certificate matching it.
    """
    data = _read_bundle(path)
    pfx = _check_pkcs12_structure(data)

    try:
        private_key, certificate, additional = (
            pkcs12.load_key_and_certificates(
                data,
                password.encode("utf-8") if password else None,
            )
        )
    except UnsupportedAlgorithm as exc:
        raise InvalidCertificate(
            f"The PKCS#12 bundle uses an unsupported algorithm: {exc}"
        ) from exc
    except ValueError as exc:
        legacy = _legacy_ciphers(pfx)
        if legacy:
            raise InvalidPassword(
                "Incorrect certificate password, or the bundle is protected "
                f"with legacy encryption ({', '.join(legacy)}) that this "
                "OpenSSL build cannot read. Check the password, or re-export "
                "the bundle with AES-256."
            ) from exc
        raise InvalidPassword() from exc

    if private_key is None:
        raise InvalidCertificate(
            "The PKCS#12 bundle does not contain a private key."
        )

    signer_cert = _select_signer_certificate(
        private_key, certificate, additional
    )

    chain = list(additional)
    if include_directory_ca_certs:
        chain.extend(load_directory_ca_certs(Path(path).parent))
    chain = _dedupe(chain, exclude=[signer_cert])

    logger.debug(
        "certificate_loaded",
        extra={
            "subject": _name_attribute(signer_cert.subject, NameOID.COMMON_NAME),
            "chain_length": len(chain),
        },
    )

    return LoadedCertificate(
        private_key=private_key,
        certificate=signer_cert,
        chain=chain,
        source_path=str(path),
    )


def describe_certificate(
    certificate: x509.Certificate,
    now: Optional[datetime] = None,
) -> CertificateInfo:
    """Build the descriptive metadata of a signer certificate."""
    now = now or datetime.now(timezone.utc)
    not_before = certificate.not_valid_before_utc
    not_after = certificate.not_valid_after_utc

    issuer = _name_attribute(
        certificate.issuer, NameOID.COMMON_NAME
    ) or _name_attribute(certificate.issuer, NameOID.ORGANIZATION_NAME)

    remaining = (not_after - now).total_seconds()

    return CertificateInfo(
        common_name=_name_attribute(certificate.subject, NameOID.COMMON_NAME),
        organization=_name_attribute(
            certificate.subject, NameOID.ORGANIZATION_NAME
        ),
        issuer=issuer,
        not_before=not_before,
        not_after=not_after,
        is_expired=now > not_after,
        is_not_yet_valid=now < not_before,
        days_until_expiration=math.floor(remaining / _SECONDS_PER_DAY),
    )


def inspect_certificate(
    path: PathLike,
    password: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> CertificateInfo:
    """
    Read-only metadata of a PKCS#12 signer certificate.

    Raises the same errors as `load_certificate`; key material is released
    before returning.
    """
    with load_certificate(path, password) as loaded:
        return loaded.info(now=now)
