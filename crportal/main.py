from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from crportal.core.config import settings
from crportal.core.exceptions import (
    CRPortalError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    PermissionDeniedError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
    error_response,
)
from crportal.core.kv_store import close_store, get_store, init_store
from crportal.core.logging_config import logger
from crportal.core.middleware import RequestLoggingMiddleware
from crportal.api.v1.router import api_router


# Most specific first
ERROR_STATUS_CODES = (
    (ValidationError, 422),
    (ConflictError, 409),
    (InvalidCredentialsError, 401),
    (SessionNotFoundError, 401),
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (StorageError, 503),
)


def status_code_for(exc: CRPortalError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("=" * 60)
    logger.info("Starting CR Portal...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info("=" * 60)

    store = await init_store(settings)
    logger.info(f"[Startup] Storage backend: {store.backend_name}")

    yield

    logger.info("Shutting down CR Portal...")
    await close_store()


app = FastAPI(
    title=settings.APP_NAME,
    description="Change request tracking portal",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False
)

# Add middleware (order matters - last added runs first)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Request-ID", "X-Response-Time"],
)


@app.exception_handler(CRPortalError)
async def portal_exception_handler(request: Request, exc: CRPortalError):
    status_code = status_code_for(exc)
    if isinstance(exc, StorageError):
        logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}")
        body = error_response(exc)
        body["error"]["message"] = "Storage is temporarily unavailable. Please try again."
        return JSONResponse(status_code=status_code, content=body)
    if status_code == 500:
        logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}")
    return JSONResponse(status_code=status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    try:
        backend = get_store().backend_name
    except RuntimeError:
        backend = None
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "storage_backend": backend,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to CR Portal",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


def run():
    import uvicorn
    uvicorn.run(
        "crportal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
