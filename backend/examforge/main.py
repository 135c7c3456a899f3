"""
ExamForge API: application factory

  POST /api/v1/extractions                  upload → 202 + job_id
  GET  /api/v1/extractions/{id}/progress    SSE (or JSON poll) event log
  GET  /api/v1/extractions/{id}             job snapshot
  GET  /health                              liveness

Jobs run inside this process as asyncio tasks owned by the orchestrator; the
lifespan hook cancels whatever is still running when the server stops, and a
sweeper task drops finished jobs once their TTL has passed.

Every response carries X-Request-ID. Errors share one JSON envelope
(``ErrorResponse``) whether they come from validation, the pipeline, or an
unhandled exception.

There is no GZip middleware here because it would buffer the progress stream.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from examforge.api.dependencies import get_request_id
from examforge.api.v1.extractions import router as extractions_router
from examforge.core.config import settings
from examforge.core.errors import ExtractionError
from examforge.llm.credentials import SettingsCredentialStore
from examforge.llm.gateway import QuestionExtractionGateway
from examforge.schemas.extraction import ErrorDetail, ErrorResponse
from examforge.services.jobs import JobStore
from examforge.services.orchestrator import ExtractionOrchestrator
from examforge.storage.questions import build_question_store

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

PRODUCTION_ORIGINS = [
    "https://app.examforge.io",
    "https://admin.examforge.io",
]


# ---------------------------------------------------------------------------
# Background housekeeping
# ---------------------------------------------------------------------------

async def _sweep_expired_jobs(store: JobStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        removed = store.purge_expired()
        if removed:
            logger.info("Job sweeper | purged %d expired job(s) remaining=%d", removed, len(store))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting ExamForge | env=%s provider=%s mode=%s rasterizer=%s",
        settings.app_env, settings.default_ai_provider,
        settings.default_extraction_mode, settings.rasterizer_binary,
    )
    sweeper = asyncio.get_event_loop().create_task(
        _sweep_expired_jobs(app.state.job_store, settings.job_sweep_interval_seconds),
        name="job-sweeper",
    )

    yield

    logger.info("Stopping ExamForge | cancelling sweeper and running jobs")
    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)
    await app.state.orchestrator.shutdown()


def _error_response(
    request:     Request,
    status_code: int,
    error_code:  str,
    message:     str,
    details:     list[ErrorDetail] | None = None,
) -> JSONResponse:
    request_id = get_request_id(request)
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details or [],
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    dev_docs = not settings.is_production
    app = FastAPI(
        title="ExamForge Question Extraction API",
        description=(
            "Turns uploaded exam papers (PDF or image) into structured questions "
            "using vision or text AI models, with live progress over SSE."
        ),
        version="1.0.0",
        docs_url="/api/docs" if dev_docs else None,
        redoc_url="/api/redoc" if dev_docs else None,
        openapi_url="/api/openapi.json" if dev_docs else None,
        lifespan=lifespan,
    )

    job_store = JobStore()
    app.state.job_store    = job_store
    app.state.credentials  = SettingsCredentialStore()
    app.state.orchestrator = ExtractionOrchestrator(
        store=job_store,
        extractor=QuestionExtractionGateway(),
        question_store=build_question_store(),
    )

    # Last added runs first: the trace middleware wraps CORS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else PRODUCTION_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "Accept"],
        expose_headers=["X-Request-ID", "X-Job-ID", "Location"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        request_id = get_request_id(request)
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms request_id=%s",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - started) * 1000, request_id,
        )
        return response

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(
                field=".".join(str(part) for part in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        return _error_response(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR", "Request validation failed.", details,
        )

    @app.exception_handler(ExtractionError)
    async def on_extraction_error(request: Request, exc: ExtractionError):
        logger.warning("Extraction error | path=%s code=%s error=%s", request.url.path, exc.code, exc)
        return _error_response(request, status.HTTP_400_BAD_REQUEST, exc.code, exc.message)

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        """Log the traceback; the client only gets the trace ID."""
        logger.exception(
            "Unhandled exception | path=%s request_id=%s", request.url.path, get_request_id(request),
        )
        return _error_response(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR", "An unexpected error occurred.",
        )

    app.include_router(extractions_router, prefix="/api/v1")

    @app.get("/health", tags=["Operations"], summary="Liveness probe")
    async def health() -> dict:
        return {
            "status": "ok",
            "service": "examforge-api",
            "jobs": len(app.state.job_store),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "examforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
    )
