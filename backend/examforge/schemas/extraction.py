"""
Extraction Jobs: Pydantic Request/Response Schemas and Progress Events

Covers:
  - The job state machine (JobStage) and extraction mode
  - ProgressEvent, the discriminated union streamed over SSE and returned by
    the JSON polling endpoint
  - 202 / status / poll response bodies
  - Structured error bodies for every documented 4xx case

Design decisions:
  - job_id is always server-generated (UUID4 hex); never client-supplied.
  - Every event carries ``seq`` (strictly increasing per job) and ``time``
    (unix seconds). ``seq`` is the read cursor for polling clients.
  - The terminal ``complete`` event never repeats the extracted questions; it
    reports counts and a URL for the saved result.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# ---------------------------------------------------------------------------
# Job state machine
# ---------------------------------------------------------------------------

class ExtractionMode(str, Enum):
    VISION = "vision"   # page images → vision model
    TEXT   = "text"     # extracted text chunks → text model


class JobStage(str, Enum):
    """
    queued → rasterizing | extracting → calling_ai (× units) → saving_questions → done
    Any stage may move to error.
    """
    QUEUED           = "queued"
    RASTERIZING      = "rasterizing"
    EXTRACTING       = "extracting"
    CALLING_AI       = "calling_ai"
    SAVING_QUESTIONS = "saving_questions"
    DONE             = "done"
    ERROR            = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.DONE, JobStage.ERROR)


# ---------------------------------------------------------------------------
# Result payloads
# ---------------------------------------------------------------------------

class UnitError(BaseModel):
    """One recorded non-fatal failure."""
    unit:    int  = Field(..., description="1-based page/chunk number")
    kind:    str  = Field(
        ...,
        description=(
            "page | slice | stitched | chunk for a failed AI call; "
            "crop for a page sent uncropped, which still counts toward success"
        ),
    )
    code:    str  = Field(..., description="Stable error code")
    message: str


class ExtractionSummary(BaseModel):
    success:        int = Field(..., description="Units whose AI call succeeded")
    failed:         int = Field(..., description="Units whose AI call failed; crop errors are not counted")
    question_count: int = Field(0, description="Questions persisted after de-duplication")
    question_ids:   list[str] = Field(default_factory=list)
    errors:         list[UnitError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# ProgressEvent: discriminated on ``type``
# ---------------------------------------------------------------------------

class _EventBase(BaseModel):
    seq:  int   = Field(0, description="Per-job sequence number, assigned by the job store")
    time: float = Field(0.0, description="Unix timestamp, assigned by the job store")


class ProgressUpdate(_EventBase):
    type:    Literal["progress"] = "progress"
    stage:   JobStage
    current: int = 0
    total:   int = 0
    message: str = ""
    meta:    dict[str, Any] | None = None


class CompleteEvent(_EventBase):
    type:         Literal["complete"] = "complete"
    result:       ExtractionSummary
    download_url: str


class ErrorEvent(_EventBase):
    type:    Literal["error"] = "error"
    message: str
    stage:   JobStage | None = Field(None, description="Stage the job was in when it failed")


ProgressEvent = Annotated[
    Union[ProgressUpdate, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(ProgressEvent)


def parse_progress_event(payload: str | bytes) -> ProgressUpdate | CompleteEvent | ErrorEvent:
    """Validate one JSON payload; raises pydantic.ValidationError."""
    return _EVENT_ADAPTER.validate_json(payload)


def is_terminal_event(event: BaseModel) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


# ---------------------------------------------------------------------------
# HTTP responses
# ---------------------------------------------------------------------------

class ExtractionAccepted(BaseModel):
    """HTTP 202: the job exists and is running in the background."""
    job_id:       str
    mode:         ExtractionMode
    media_type:   str
    progress_url: str = Field(..., description="SSE stream; add ?format=json to poll")
    status_url:   str


class JobStatusResponse(BaseModel):
    job_id:          str
    mode:            ExtractionMode
    media_type:      str
    filename:        str
    stage:           JobStage
    total_units:     int
    completed_units: int
    errors:          list[UnitError] = Field(default_factory=list)
    result:          ExtractionSummary | None = None
    created_at:      float
    finished_at:     float | None = None


class ProgressPollResponse(BaseModel):
    job_id: str
    events: list[ProgressEvent]
    done:   bool = Field(..., description="True once the terminal event is included")


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error: may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str         = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


class ExtractionErrors:
    """Factories for every documented error case."""

    @staticmethod
    def empty_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="EMPTY_FILE",
            message="The uploaded file is empty.",
            details=[ErrorDetail(field="file", message="Received 0 bytes.", code="EMPTY_FILE")],
        )

    @staticmethod
    def file_too_large(size_bytes: int, limit: int) -> ErrorResponse:
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"Uploaded file exceeds the {limit // (1024 * 1024)} MB limit.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {size_bytes:,} bytes; limit is {limit:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def unsupported_media_type(filename: str, detected_type: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="UNSUPPORTED_MEDIA_TYPE",
            message=f"File type '{detected_type}' is not supported.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"'{filename}' is neither a PDF nor an image.",
                    code="UNSUPPORTED_MEDIA_TYPE",
                )
            ],
        )

    @staticmethod
    def unknown_provider(provider: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="UNKNOWN_PROVIDER",
            message=f"AI provider '{provider}' is not configured.",
            details=[ErrorDetail(field="provider", message=f"Unknown provider '{provider}'.", code="UNKNOWN_PROVIDER")],
        )

    @staticmethod
    def invalid_crop(top: float, bottom: float) -> ErrorResponse:
        return ErrorResponse(
            error_code="INVALID_CROP",
            message="crop_top + crop_bottom must be below 100.",
            details=[
                ErrorDetail(
                    field="crop_top",
                    message=f"crop_top={top} + crop_bottom={bottom} removes the whole page.",
                    code="INVALID_CROP",
                )
            ],
        )

    @staticmethod
    def job_not_found(job_id: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="JOB_NOT_FOUND",
            message=f"Extraction job '{job_id}' does not exist or has expired.",
        )
