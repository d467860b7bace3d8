import logging

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import router
from app.core.config import Settings
from app.core.config import settings as default_settings
from app.core.exceptions import ConfigurationError
from app.core.exceptions import DocumentIndexError
from app.core.exceptions import DocumentValidationError
from app.core.exceptions import ExtractorError
from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import ProposalEngineError
from app.core.exceptions import ProtocolError
from app.core.exceptions import TransportError
from app.core.logging import setup_logging
from app.services.document_analyzer import DocumentAnalyzer
from app.services.document_index import CompanyDocumentIndex
from app.services.orchestrator import MultiSectionOrchestrator
from app.services.section_generator import SectionGenerator

setup_logging()

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[ProposalEngineError], int] = {
    ConfigurationError: status.HTTP_503_SERVICE_UNAVAILABLE,
    DocumentValidationError: status.HTTP_400_BAD_REQUEST,
    TransportError: status.HTTP_502_BAD_GATEWAY,
    ProtocolError: status.HTTP_502_BAD_GATEWAY,
    GenerationCancelledError: status.HTTP_409_CONFLICT,
    ExtractorError: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    DocumentIndexError: status.HTTP_404_NOT_FOUND,
}


async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.error("HTTP exception: %s (status: %d)", exc.detail, exc.status_code)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # Log the detailed Pydantic validation errors to the server console
    logger.error("Request validation failed: %s", exc.errors(), exc_info=False)
    return JSONResponse(
        {"error": "Input validation failed", "details": jsonable_errors(exc)},
        status_code=422,
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{k: v for k, v in err.items() if k in ("loc", "msg", "type")} for err in exc.errors()]


async def engine_exception_handler(_request: Request, exc: ProposalEngineError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if isinstance(exc, GenerationCancelledError):
        logger.info("Request ended by cancellation: %s", str(exc))
    else:
        logger.error("%s: %s (status: %d)", type(exc).__name__, str(exc), status_code)
    return JSONResponse({"error": str(exc)}, status_code=status_code)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application and its long-lived services.

    Services are stored on ``app.state`` so routes share one generator, one
    analyzer and one document index per application.
    """
    settings = settings or default_settings
    app = FastAPI(title="RFP Proposal Engine")

    document_index = CompanyDocumentIndex()
    generator = SectionGenerator(settings, document_index=document_index)
    app.state.settings = settings
    app.state.document_index = document_index
    app.state.generator = generator
    app.state.orchestrator = MultiSectionOrchestrator(generator)
    app.state.analyzer = DocumentAnalyzer(settings)

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info(
            "Application started: model=%s, ai_generation=%s",
            settings.model_id,
            settings.enable_ai_generation,
        )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await app.state.generator.aclose()
        await app.state.analyzer.aclose()
        logger.info("Application shut down; LLM clients closed")

    @app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
    async def health_check() -> dict[str, str]:
        logger.debug("Health check endpoint called")
        return {"status": "ok"}

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ProposalEngineError, engine_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
