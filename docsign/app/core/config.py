"""
Centralized configuration management for the document signing engine.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.
"""

from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    SecretStr,
    Field(
        default=SecretStr(""),
        description="Sensitive credential, redacted from logs",
    ),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    A blank certificate path is a valid configuration: it selects the
    visual (non-cryptographic) signature strategy.
    """

    # ---------------------------------------------------------------------
    # PKCS#12 signing credentials
    # ---------------------------------------------------------------------

    certificate_path: Annotated[
        Optional[str],
        Field(
            default=None,
            description="Path to the .p12/.pfx bundle used for sealing",
        ),
    ]

    certificate_password: SensitiveEnv

    include_directory_ca_certs: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "Embed .cer/.crt/.pem files found next to the PKCS#12 "
                "bundle as the certificate chain"
            ),
        ),
    ]

    # ---------------------------------------------------------------------
    # CMS engine
    # ---------------------------------------------------------------------

    cms_engine: Annotated[
        Literal["openssl", "cryptography"],
        Field(
            default="openssl",
            description=(
                "CMS signing engine: an OpenSSL subprocess or the "
                "in-process cryptography PKCS#7 builder"
            ),
        ),
    ]

    openssl_binary: Annotated[
        str,
        Field(
            default="openssl",
            min_length=1,
            description="OpenSSL executable name or absolute path",
        ),
    ]

    signer_timeout_seconds: Annotated[
        float,
        Field(
            default=30.0,
            gt=0,
            le=300,
            description="Upper bound on a single external signing process",
        ),
    ]

    # ---------------------------------------------------------------------
    # Signature dictionary
    # ---------------------------------------------------------------------

    signature_bytes_reserved: Annotated[
        int,
        Field(
            default=16384,
            ge=2048,
            le=65536,
            description=(
                "Bytes reserved for the CMS container. The /Contents "
                "placeholder holds twice as many hex characters."
            ),
        ),
    ]

    signature_field_name: Annotated[
        str,
        Field(default="Signature1", min_length=1),
    ]

    signature_reason: Annotated[
        str,
        Field(default="Digital signature"),
    ]

    signature_location: Annotated[
        str,
        Field(default=""),
    ]

    visible_stamp: Annotated[
        bool,
        Field(
            default=True,
            description="Draw the signer box on the last page before sealing",
        ),
    ]

    # ---------------------------------------------------------------------
    # Operational boundaries
    # ---------------------------------------------------------------------

    max_pdf_size_mb: Annotated[
        int,
        Field(
            default=25,
            ge=1,
            le=100,
            description="OOM protection limit for uploaded documents",
        ),
    ]

    expiry_warning_days: Annotated[
        int,
        Field(default=30, ge=1),
    ]

    expiry_critical_days: Annotated[
        int,
        Field(default=7, ge=0),
    ]

    model_config = SettingsConfigDict(
        env_prefix="DOCSIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("certificate_path")
    @classmethod
    def blank_path_means_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("expiry_critical_days")
    @classmethod
    def critical_within_warning(cls, v: int, info: ValidationInfo) -> int:
        warning = info.data.get("expiry_warning_days")
        if warning is not None and v > warning:
            raise ValueError(
                "expiry_critical_days cannot exceed expiry_warning_days."
            )
        return v

    @property
    def reserved_hex_length(self) -> int:
        return self.signature_bytes_reserved * 2

    @property
    def certificate_configured(self) -> bool:
        return self.certificate_path is not None


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    Uses an explicit singleton pattern within the FastAPI lifecycle.
    """
    return Settings()  # singleton within process
