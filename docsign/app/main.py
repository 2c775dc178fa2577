import sys
import logging

from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from docsign.app.api.routes import router as sign_router
from docsign.app.core.config import Settings
from docsign.app.services.notifications import check_certificate_expiry
from docsign.app.services.signature_service import SignatureService

logger = logging.getLogger("docsign.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the project-defined version when running from source.
    """
    try:
        return version("docsign")
    except PackageNotFoundError:
        return "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Guarantees:
    - Fail-fast startup if configuration is invalid
    - Signature strategy selected exactly once per process
    - Expiry of the signing certificate reported at startup (advisory)
    """
    logger.info(
        "docsign_startup_begin",
        extra={
            "service": "docsign",
            "version": get_app_version(),
        },
    )

    # ------------------------------------------------------------------
    # Load and validate configuration (FAIL FAST)
    # ------------------------------------------------------------------
    try:
        settings = Settings()
    except Exception:
        logger.exception("invalid_docsign_configuration")
        raise

    if getattr(app.state, "settings", None) is not None:
        raise RuntimeError("settings already initialized")

    app.state.settings = settings
    app.state.signature_service = SignatureService.from_settings(settings)

    if not app.state.signature_service.verify_certificate() and (
        settings.certificate_configured
    ):
        logger.warning(
            "certificate_file_missing",
            extra={"certificate_path": settings.certificate_path},
        )

    check_certificate_expiry(
        settings.certificate_path,
        settings.certificate_password.get_secret_value(),
        warning_days=settings.expiry_warning_days,
        critical_days=settings.expiry_critical_days,
    )

    try:
        yield
    finally:
        logger.info("docsign_shutdown_begin")
        app.state.signature_service = None
        app.state.settings = None


def create_app() -> FastAPI:
    """
    Application factory for the document signing service.
    """
    app = FastAPI(
        title="DocSign",
        description=(
            "PDF signing service producing detached CMS signatures "
            "from a PKCS#12 certificate."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Internal service, CORS enforced at ingress
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(sign_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness and readiness check",
    )
    async def health_check():
        """
        Verifies that the runtime is alive and correctly initialized.

        NOTE:
        - Does NOT perform cryptographic operations
        - Does NOT open the certificate
        """
        service = getattr(app.state, "signature_service", None)
        return ORJSONResponse(
            content={
                "status": "ok",
                "service": "docsign",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
                "signature_strategy": (
                    service.get_signature_info().type if service else None
                ),
            }
        )

    return app


app = create_app()
