"""FastAPI application entry point."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api import audit_router, documents_router
from src.core.config import settings
from src.core.exceptions import DocumentImportError
from src.core.logging import bind_context, clear_context, get_logger, setup_logging
from src.db import dispose_engine, get_db
from src.schemas import ErrorResponse, HealthResponse

logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    setup_logging()
    logger.info(
        "Starting document import API",
        environment=settings.environment,
        llm_provider=settings.llm_provider,
        storage_provider=settings.storage_provider,
    )
    yield
    # Shutdown
    await dispose_engine()


async def document_import_error_handler(_request: Request, exc: DocumentImportError) -> JSONResponse:
    """Render domain errors as ErrorResponse with the error's HTTP status."""
    if exc.status_code >= 500:
        logger.error("Request failed", error_code=exc.error_code, error=exc.message)
    else:
        logger.info("Request rejected", error_code=exc.error_code, error=exc.message)
    body = ErrorResponse(error=exc.error_code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def create_app() -> FastAPI:
    """Application factory for creating the FastAPI instance."""
    app = FastAPI(
        title="Pet Health Document Import API",
        description=(
            "Turns uploaded vet documents (PDFs and photos) into reviewed, "
            "audited pet health records.\n\n"
            "## Features\n"
            "- **Documents**: Upload, classify and extract health records\n"
            "- **Review**: Edit, approve or reject extracted records, with duplicate detection\n"
            "- **Audit Log**: Immutable history of every health-record change\n"
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Fresh log context per request."""
        clear_context()
        bind_context(method=request.method, path=request.url.path)
        return await call_next(request)

    app.add_exception_handler(DocumentImportError, document_import_error_handler)

    # Register routers
    app.include_router(
        documents_router,
        prefix="/api/v1/pets/{pet_id}/documents",
        tags=["Documents"],
    )
    app.include_router(
        audit_router,
        prefix="/api/v1/pets/{pet_id}/audit-log",
        tags=["Audit Log"],
    )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
        """Health check endpoint for container orchestration."""
        try:
            await db.execute(text("SELECT 1"))
            database = "connected"
        except SQLAlchemyError as e:
            logger.warning("Health check: database unreachable", error=str(e))
            database = "error"
        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=VERSION,
            database=database,
            llm_provider=settings.llm_provider,
            storage_provider=settings.storage_provider,
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "Pet Health Document Import API",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# Create the app instance
app = create_app()
