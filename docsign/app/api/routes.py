import logging
import uuid
from typing import Annotated, Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Header,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import Response

from docsign.app.core.config import Settings
from docsign.app.core.errors import (
    CertificateNotFound,
    InvalidCertificate,
    InvalidPassword,
    PdfPreparationError,
    SignatureError,
)
from docsign.app.schemas.certificate import CertificateStatusResponse
from docsign.app.services.certificates import inspect_certificate
from docsign.app.services.notifications import certificate_expiry_notice
from docsign.app.services.signature_service import SignatureService

logger = logging.getLogger("docsign.api")

router = APIRouter(tags=["Document Signing"])

# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Audit trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_settings_from_state(request: Request) -> Settings:
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    if settings is None:
        raise RuntimeError("settings not initialized")
    return settings


def get_signature_service(request: Request) -> SignatureService:
    """The service is built once at startup; its strategy never changes."""
    service: Optional[SignatureService] = getattr(
        request.app.state, "signature_service", None
    )
    if service is None:
        raise RuntimeError("signature service not initialized")
    return service


# =============================================================================
# Error mapping
# =============================================================================

def _status_for(exc: SignatureError) -> int:
    if isinstance(exc, CertificateNotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(
        exc, (InvalidPassword, InvalidCertificate, PdfPreparationError)
    ):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _safe_filename(filename: Optional[str]) -> str:
    if not filename:
        return "signed.pdf"
    cleaned = (
        filename.replace('"', "")
        .replace("\n", "")
        .replace("\r", "")
        .replace("/", "_")
        .replace("\\", "_")
    )
    stem = cleaned[:-4] if cleaned.lower().endswith(".pdf") else cleaned
    return f"{stem}_signed.pdf"


# =============================================================================
# POST /sign
# =============================================================================

@router.post(
    "/sign",
    summary="Sign a PDF document (visual or PKCS#12 cryptographic)",
    response_class=Response,
    responses={
        200: {
            "content": {"application/pdf": {}},
            "description": "Signed PDF document",
        },
        404: {"description": "Configured certificate not found"},
        413: {"description": "Payload too large"},
        415: {"description": "Unsupported media type"},
        422: {"description": "Invalid PDF input or certificate"},
        500: {"description": "Signing failure"},
    },
)
async def sign_document(
    file: Annotated[
        UploadFile,
        File(description="PDF document to sign"),
    ],
    settings: Annotated[Settings, Depends(get_settings_from_state)],
    service: Annotated[SignatureService, Depends(get_signature_service)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> Response:
    """
    Sign an uploaded PDF with the strategy selected at startup.

    The cryptographic strategy embeds a detached CMS signature
    (/adbe.pkcs7.detached). The visual strategy only stamps the last page.
    """

    # ------------------------------------------------------------------
    # 1. Validation (strict guardrails)
    # ------------------------------------------------------------------

    if file.content_type != "application/pdf":
        logger.warning(
            "invalid_media_type",
            extra={
                "content_type": file.content_type,
                "trace_id": correlation_id,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only 'application/pdf' files are accepted.",
            headers={"X-Correlation-ID": correlation_id},
        )

    max_bytes = settings.max_pdf_size_mb * 1024 * 1024
    strategy_type = service.get_signature_info().type

    try:
        # ------------------------------------------------------------------
        # 2. Bounded read
        # ------------------------------------------------------------------

        input_pdf_bytes = await file.read(max_bytes + 1)

        if not input_pdf_bytes:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Empty PDF payload.",
                headers={"X-Correlation-ID": correlation_id},
            )

        if len(input_pdf_bytes) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File exceeds the {settings.max_pdf_size_mb}MB limit.",
                headers={"X-Correlation-ID": correlation_id},
            )

        safe_filename = _safe_filename(file.filename)

        logger.info(
            "initiating_document_signature",
            extra={
                "filename": safe_filename,
                "trace_id": correlation_id,
                "strategy": strategy_type,
            },
        )

        # ------------------------------------------------------------------
        # 3. Sign
        # ------------------------------------------------------------------

        signed_pdf_bytes = await service.sign_bytes(input_pdf_bytes)

        logger.info(
            "document_signature_success",
            extra={
                "filename": safe_filename,
                "trace_id": correlation_id,
                "strategy": strategy_type,
            },
        )

        return Response(
            content=signed_pdf_bytes,
            media_type="application/pdf",
            headers={
                "Content-Disposition": (
                    f'attachment; filename="{safe_filename}"'
                ),
                "X-Correlation-ID": correlation_id,
                "X-Signature-Strategy": strategy_type,
            },
        )

    except HTTPException:
        raise

    except SignatureError as exc:
        code = _status_for(exc)
        if code >= 500:
            logger.exception(
                "signing_pipeline_failure",
                extra={
                    "trace_id": correlation_id,
                    "error_type": type(exc).__name__,
                },
            )
        else:
            logger.warning(
                "signing_request_rejected",
                extra={
                    "trace_id": correlation_id,
                    "error_type": type(exc).__name__,
                },
            )
        raise HTTPException(
            status_code=code,
            detail=str(exc) if code < 500 else "Document signing failed.",
            headers={"X-Correlation-ID": correlation_id},
        ) from exc

    except Exception as exc:
        logger.exception(
            "signing_pipeline_failure",
            extra={
                "trace_id": correlation_id,
                "error_type": type(exc).__name__,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Document signing failed.",
            headers={"X-Correlation-ID": correlation_id},
        ) from exc

    finally:
        await file.close()


# =============================================================================
# GET /certificate
# =============================================================================

@router.get(
    "/certificate",
    summary="Signer certificate metadata and expiry notice",
    response_model=CertificateStatusResponse,
    responses={
        404: {"description": "No certificate configured or file missing"},
        422: {"description": "Certificate cannot be opened"},
    },
)
async def certificate_status(
    settings: Annotated[Settings, Depends(get_settings_from_state)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> CertificateStatusResponse:
    if not settings.certificate_configured:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No signing certificate is configured.",
            headers={"X-Correlation-ID": correlation_id},
        )

    try:
        info = inspect_certificate(
            settings.certificate_path,
            settings.certificate_password.get_secret_value(),
        )
    except SignatureError as exc:
        logger.warning(
            "certificate_inspection_failed",
            extra={
                "trace_id": correlation_id,
                "error_type": type(exc).__name__,
            },
        )
        code = _status_for(exc)
        raise HTTPException(
            status_code=code,
            detail=str(exc) if code < 500 else "Certificate inspection failed.",
            headers={"X-Correlation-ID": correlation_id},
        ) from exc

    return CertificateStatusResponse(
        certificate=info,
        expiry_notice=certificate_expiry_notice(
            info,
            warning_days=settings.expiry_warning_days,
            critical_days=settings.expiry_critical_days,
        ),
    )
