import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hybridedit.api import admin_gc, exports, jobs, operations, projects
from hybridedit.config import get_settings
from hybridedit.constants.error_codes import get_error_spec
from hybridedit.exceptions import HybridEditError
from hybridedit.models.database import async_session_maker, engine, init_db
from hybridedit.render.media import FFmpegMediaProcessor
from hybridedit.schemas.envelope import ErrorInfo, ErrorResponse
from hybridedit.services.event_manager import ProjectEventManager
from hybridedit.services.storage_service import LocalStorageService
from hybridedit.tasks.render_queue import RenderQueue

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    app.state.storage = LocalStorageService(settings.storage_root)
    app.state.event_manager = ProjectEventManager()
    app.state.render_queue = RenderQueue(
        async_session_maker,
        app.state.storage,
        FFmpegMediaProcessor(),
        app.state.event_manager,
    )
    await app.state.render_queue.recover()
    app.state.render_queue.start()
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    # Shutdown
    await app.state.render_queue.stop()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "VALIDATION_ERROR",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "HTTP_ERROR")


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    body = ErrorResponse(detail=error.message, error=error)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(exclude_none=True)),
    )


@app.exception_handler(HybridEditError)
async def hybridedit_exception_handler(request: Request, exc: HybridEditError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    spec = get_error_spec("VALIDATION_ERROR")
    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(422, error)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_code = _http_error_code(exc.status_code)
    spec = get_error_spec(error_code)
    error = ErrorInfo(
        code=error_code,
        message=str(exc.detail),
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(exc.status_code, error)


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
    )
    return _error_response(500, error)


# Routers
app.include_router(projects.router, prefix="/api", tags=["projects"])
app.include_router(operations.router, prefix="/api", tags=["operations"])
app.include_router(exports.router, prefix="/api", tags=["exports"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(admin_gc.router, prefix="/api/admin/gc", tags=["admin-gc"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version}
