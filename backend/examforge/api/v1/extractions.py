"""
Extraction API Router
POST /api/v1/extractions
GET  /api/v1/extractions/{job_id}/progress
GET  /api/v1/extractions/{job_id}

Request lifecycle:
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Read upload, reject empty / oversized files          │
  │ 2. Media type from magic bytes (PDF or image only)      │
  │ 3. Validate crop geometry, resolve AI provider          │
  │ 4. Create job (queued) in the JobStore                  │
  │ 5. Orchestrator task started → returns 202 + job_id     │
  └─────────────────────────────────────────────────────────┘

Progress (GET /{job_id}/progress):
  SSE by default: ": connected" banner, the job's event log from ``since``,
  live events, ": ping" keepalives while idle. The response ends right after
  the terminal event. With ``format=json`` (or Accept: application/json) the
  same log is returned as one JSON document for polling clients.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse

from examforge.api.dependencies import Credentials, Jobs, Orchestrator, RequestID
from examforge.core.config import settings
from examforge.core.errors import UnknownProvider
from examforge.processing.document import detect_mime_type, sniff_document
from examforge.processing.images import CropSpec, StitchSpec
from examforge.schemas.extraction import (
    ErrorResponse,
    ExtractionAccepted,
    ExtractionErrors,
    ExtractionMode,
    JobStatusResponse,
    ProgressPollResponse,
    is_terminal_event,
)
from examforge.services.jobs import ExtractionJob, JobNotFound
from examforge.services.orchestrator import ExtractionOptions, resolve_mode
from examforge.streaming.sse import comment_frame, encode_event, keepalive_frame

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/extractions",
    tags=["Question Extraction"],
)


# ---------------------------------------------------------------------------
# POST /extractions
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ExtractionAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a question extraction job",
    description=(
        "Accepts one PDF or image. Returns 202 immediately with a job_id; "
        "follow progress at GET /extractions/{job_id}/progress."
    ),
    responses={
        202: {"model": ExtractionAccepted, "description": "Job created"},
        400: {"model": ErrorResponse, "description": "Empty file or unknown provider"},
        413: {"model": ErrorResponse, "description": "File exceeds the upload limit"},
        415: {"model": ErrorResponse, "description": "Neither a PDF nor an image"},
        422: {"model": ErrorResponse, "description": "Invalid form fields or crop geometry"},
    },
)
async def create_extraction(
    request_id:     RequestID,
    jobs:           Jobs,
    orchestrator:   Orchestrator,
    credentials:    Credentials,
    file:           UploadFile = File(..., description="PDF or image"),
    mode:           Optional[ExtractionMode] = Form(None, description="vision | text (images always use vision)"),
    prompt:         Optional[str] = Form(None, max_length=4000, description="Replaces the default extraction instruction"),
    provider:       Optional[str] = Form(None, description="Configured AI provider name"),
    dpi:            Optional[int] = Form(None, ge=50, le=600, description="Rasterization DPI (vision mode)"),
    crop_top:       Optional[float] = Form(None, ge=0, lt=100, description="Percent of each page to drop at the top"),
    crop_bottom:    Optional[float] = Form(None, ge=0, lt=100, description="Percent of each page to drop at the bottom"),
    stitch_pages:   bool = Form(False, description="Stack all pages into one image"),
    stitch_spacing: Optional[int] = Form(None, ge=0, le=500, description="Pixels between stitched pages"),
) -> JSONResponse:
    data = await file.read()
    filename = file.filename or "upload"

    if not data:
        return _error(status.HTTP_400_BAD_REQUEST, ExtractionErrors.empty_file(), request_id)

    if len(data) > settings.max_upload_bytes:
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            ExtractionErrors.file_too_large(len(data), settings.max_upload_bytes),
            request_id,
        )

    document = sniff_document(data, filename, dpi)
    if document is None:
        return _error(
            status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            ExtractionErrors.unsupported_media_type(filename, detect_mime_type(filename, data[:16])),
            request_id,
        )

    # Unset form fields fall back to the deployment defaults
    if crop_top is None:
        crop_top = settings.crop_top_percent
    if crop_bottom is None:
        crop_bottom = settings.crop_bottom_percent
    if stitch_spacing is None:
        stitch_spacing = settings.stitch_spacing_px

    if crop_top + crop_bottom >= 100:
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ExtractionErrors.invalid_crop(crop_top, crop_bottom),
            request_id,
        )

    try:
        credential = credentials.resolve(provider)
    except UnknownProvider:
        return _error(
            status.HTTP_400_BAD_REQUEST, ExtractionErrors.unknown_provider(provider or ""), request_id,
        )

    resolved_mode = resolve_mode(document.media_type, mode)
    options = ExtractionOptions(
        mode=resolved_mode,
        credential=credential,
        prompt=prompt or None,
        dpi=dpi,
        crop=CropSpec(crop_top, crop_bottom) if (crop_top or crop_bottom) else None,
        stitch=StitchSpec(stitch_spacing) if stitch_pages else None,
    )

    job = jobs.create(
        resolved_mode, document.media_type.value, filename, provider=credential.provider.value,
    )
    orchestrator.submit(job.job_id, document, options)

    logger.info(
        "Extraction accepted | job_id=%s mode=%s media=%s bytes=%d provider=%s request_id=%s",
        job.job_id, resolved_mode.value, document.media_type.value,
        len(data), credential.provider.value, request_id,
    )

    status_url = f"/api/v1/extractions/{job.job_id}"
    body = ExtractionAccepted(
        job_id=job.job_id,
        mode=resolved_mode,
        media_type=document.media_type.value,
        progress_url=f"{status_url}/progress",
        status_url=status_url,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={
            "X-Request-ID": request_id,
            "X-Job-ID":     job.job_id,
            "Location":     status_url,
        },
    )


# ---------------------------------------------------------------------------
# GET /extractions/{job_id}/progress: SSE stream or JSON poll
# ---------------------------------------------------------------------------

@router.get(
    "/{job_id}/progress",
    summary="Follow job progress (SSE, or JSON with format=json)",
    responses={
        200: {"description": "text/event-stream, or ProgressPollResponse for format=json"},
        404: {"model": ErrorResponse},
    },
)
async def stream_progress(
    job_id:  str,
    request: Request,
    jobs:    Jobs,
    since:   int = Query(0, ge=0, description="Only events with seq greater than this"),
    format:  Optional[str] = Query(None, description="'json' for a polling response"),
):
    _get_job_or_404(jobs, job_id)

    accept = request.headers.get("accept", "")
    wants_json = format == "json" or (
        "application/json" in accept and "text/event-stream" not in accept
    )
    if wants_json:
        events = jobs.events_since(job_id, since)
        return ProgressPollResponse(
            job_id=job_id,
            events=events,
            done=any(is_terminal_event(e) for e in events),
        )

    async def event_generator() -> AsyncGenerator[str, None]:
        """Yield SSE frames until the terminal event or client disconnect."""
        yield comment_frame("connected")
        try:
            async for event in jobs.subscribe(
                job_id, after=since, idle_timeout=settings.sse_keepalive_seconds,
            ):
                if event is None:
                    if await request.is_disconnected():
                        logger.debug("SSE client disconnected | job_id=%s", job_id)
                        return
                    yield keepalive_frame()
                    continue
                yield encode_event(event)
        except JobNotFound:
            # Purged by the TTL sweeper while the stream was open
            logger.info("SSE job expired mid-stream | job_id=%s", job_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control":     "no-cache",
            "Connection":        "keep-alive",
            "X-Accel-Buffering": "no",  # disable nginx buffering for SSE
        },
    )


# ---------------------------------------------------------------------------
# GET /extractions/{job_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{job_id}",
    response_model=JobStatusResponse,
    summary="Job snapshot",
    responses={404: {"model": ErrorResponse}},
)
async def get_extraction(job_id: str, jobs: Jobs) -> JobStatusResponse:
    job = _get_job_or_404(jobs, job_id)
    return JobStatusResponse(
        job_id=job.job_id,
        mode=job.mode,
        media_type=job.media_type,
        filename=job.filename,
        stage=job.stage,
        total_units=job.total_units,
        completed_units=job.completed_units,
        errors=list(job.errors),
        result=job.result,
        created_at=job.created_at,
        finished_at=job.finished_at,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_job_or_404(jobs, job_id: str) -> ExtractionJob:
    try:
        return jobs.get(job_id)
    except JobNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ExtractionErrors.job_not_found(job_id).model_dump(),
        ) from None


def _error(status_code: int, body: ErrorResponse, request_id: str) -> JSONResponse:
    body.request_id = request_id
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )
