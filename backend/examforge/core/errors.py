"""
Extraction error taxonomy.

Every failure the pipeline can surface is one of these types. The orchestrator
decides scope from the type alone:

  UnitExtractionFailed          → recorded per unit, job continues
  UnreadableImage /
  InvalidCropResult             → local to one image; fatal only for a single-image batch
  RasterizationFailed /
  ParseError /
  NoExtractableUnits            → job-level, terminal ``error`` event
  TransportFailed               → client side only (stream consumer)
"""

from __future__ import annotations


class ExtractionError(Exception):
    """Base class. ``code`` is stable and safe to show to API clients."""

    code = "EXTRACTION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnreadableImage(ExtractionError):
    code = "UNREADABLE_IMAGE"


class InvalidCropResult(ExtractionError):
    code = "INVALID_CROP_RESULT"


class RasterizationFailed(ExtractionError):
    """The external rasterizer exited non-zero, timed out, or produced no pages."""

    code = "RASTERIZATION_FAILED"

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        if self.diagnostics:
            return f"{self.message}: {self.diagnostics}"
        return self.message


class ParseError(ExtractionError):
    code = "PARSE_ERROR"


class NoExtractableUnits(ExtractionError):
    code = "NO_EXTRACTABLE_UNITS"


class UnitExtractionFailed(ExtractionError):
    """One page/chunk's AI call failed or returned unusable output."""

    code = "UNIT_EXTRACTION_FAILED"

    def __init__(self, message: str, unit: int | None = None) -> None:
        super().__init__(message)
        self.unit = unit


class TransportFailed(ExtractionError):
    code = "TRANSPORT_FAILED"

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class UnknownProvider(ExtractionError):
    code = "UNKNOWN_PROVIDER"
