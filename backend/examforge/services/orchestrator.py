"""
Extraction Orchestrator: one sequential task per job
══════════════════════════════════════════════════════

  ┌──────────────────────────────────────────────────────────────┐
  │ queued                                                       │
  │   │                                                          │
  │   ├─ vision ─► rasterizing  PageRasterizer + cropping        │
  │   │                         (images: tall-image slicing)     │
  │   └─ text ───► extracting   PdfTextExtractor + TextChunker   │
  │                   │                                          │
  │                   ▼  total_units fixed here                  │
  │              calling_ai  × N   one AI call per unit,         │
  │                   │            timeout + retry, failures     │
  │                   │            recorded and skipped          │
  │                   ▼                                          │
  │              saving_questions  reconcile → question store    │
  │                   │                                          │
  │                   ▼                                          │
  │              complete {success, failed, …}                   │
  │                                                              │
  │  any stage ──► error   (no units, tool crash, job timeout)   │
  └──────────────────────────────────────────────────────────────┘

Units are processed strictly one at a time so progress is monotonic and the
provider sees one request per job at a time. Every event goes through the
JobStore, which assigns the order; the orchestrator emits exactly one
terminal event per job.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Protocol

from examforge.core.config import settings
from examforge.core.errors import ExtractionError, NoExtractableUnits, UnitExtractionFailed
from examforge.llm.credentials import AICredential
from examforge.processing.chunking import TextChunker, normalize_text
from examforge.processing.document import Document, MediaType
from examforge.processing.images import CropSpec, PageImageProcessor, StitchSpec
from examforge.processing.pdf_text import PdfTextExtractor
from examforge.processing.rasterizer import PageRasterizer
from examforge.schemas.extraction import (
    CompleteEvent,
    ErrorEvent,
    ExtractionMode,
    ExtractionSummary,
    JobStage,
    ProgressUpdate,
    UnitError,
)
from examforge.schemas.questions import QuestionCandidate
from examforge.services.jobs import JobStore
from examforge.services.reconcile import merge_and_dedupe
from examforge.storage.questions import QuestionStore

logger = logging.getLogger(__name__)


class QuestionExtractor(Protocol):
    async def extract_from_image(
        self, image: bytes, credential: AICredential, prompt: str | None = None, mime_type: str = "image/png",
    ) -> list[QuestionCandidate]:
        ...

    async def extract_from_text(
        self, text: str, credential: AICredential, part: int = 1, total: int = 1,
        prompt: str | None = None, context: str | None = None,
    ) -> list[QuestionCandidate]:
        ...


@dataclass
class ExtractionOptions:
    mode:       ExtractionMode
    credential: AICredential
    prompt:     str | None = None
    dpi:        int | None = None
    crop:       CropSpec | None = None
    stitch:     StitchSpec | None = None


@dataclass
class WorkUnit:
    """One AI call: a page image, an image slice, or a text chunk."""
    number:    int            # 1-based
    kind:      str            # "page" | "slice" | "stitched" | "chunk"
    image:     bytes | None = None
    mime_type: str = "image/png"
    text:      str | None = None
    context:   str | None = None   # extra leading text when the previous chunk looked incomplete


def resolve_mode(media_type: MediaType, requested: ExtractionMode | None) -> ExtractionMode:
    """Images can only be read visually; PDFs honour the request or the configured default."""
    if media_type == MediaType.IMAGE:
        return ExtractionMode.VISION
    return requested or ExtractionMode(settings.default_extraction_mode)


class ExtractionOrchestrator:
    """
    Usage::

        orchestrator = ExtractionOrchestrator(store, gateway, question_store)
        job = store.create(mode, document.media_type.value, document.filename)
        orchestrator.submit(job.job_id, document, options)     # background task
        # or: await orchestrator.run(job.job_id, document, options)
    """

    def __init__(
        self,
        store:           JobStore,
        extractor:       QuestionExtractor,
        question_store:  QuestionStore,
        rasterizer:      PageRasterizer | None = None,
        image_processor: PageImageProcessor | None = None,
        text_extractor:  PdfTextExtractor | None = None,
        chunker:         TextChunker | None = None,
        unit_timeout:    float | None = None,
        max_attempts:    int | None = None,
        retry_delay:     float | None = None,
        job_timeout:     float | None = None,
        widen_chars:     int | None = None,
    ) -> None:
        self._store     = store
        self._extractor = extractor
        self._questions = question_store
        self._rasterizer = rasterizer or PageRasterizer()
        self._images     = image_processor or PageImageProcessor()
        self._text       = text_extractor or PdfTextExtractor()
        self._chunker    = chunker or TextChunker()

        self._unit_timeout = unit_timeout if unit_timeout is not None else settings.unit_timeout_seconds
        self._max_attempts = max(1, max_attempts if max_attempts is not None else settings.unit_max_attempts)
        self._retry_delay  = retry_delay if retry_delay is not None else settings.unit_retry_delay_seconds
        self._job_timeout  = job_timeout if job_timeout is not None else settings.job_timeout_seconds
        self._widen_chars  = widen_chars if widen_chars is not None else settings.incomplete_widen_chars

        self._tasks: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Background execution
    # -----------------------------------------------------------------------

    def submit(self, job_id: str, document: Document, options: ExtractionOptions) -> asyncio.Task:
        task = asyncio.get_event_loop().create_task(
            self.run(job_id, document, options), name=f"extraction-{job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        """Cancel in-flight jobs; each one still emits its terminal error event."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Orchestrator | cancelled %d running job(s) on shutdown", len(tasks))

    # -----------------------------------------------------------------------
    # Job entry point: always ends with exactly one terminal event
    # -----------------------------------------------------------------------

    async def run(self, job_id: str, document: Document, options: ExtractionOptions) -> None:
        t0 = time.monotonic()
        try:
            await asyncio.wait_for(
                self._execute(job_id, document, options), timeout=self._job_timeout,
            )
        except asyncio.TimeoutError:
            self._fail(job_id, f"Extraction timed out after {self._job_timeout:.0f}s")
        except ExtractionError as exc:
            logger.warning("Orchestrator | job failed job_id=%s code=%s error=%s", job_id, exc.code, exc)
            self._fail(job_id, str(exc))
        except asyncio.CancelledError:
            self._fail(job_id, "Extraction cancelled")
            raise
        except Exception:
            logger.exception("Orchestrator | unexpected failure job_id=%s", job_id)
            self._fail(job_id, "Unexpected error during extraction")
        finally:
            logger.info(
                "Orchestrator | finished job_id=%s elapsed_ms=%.0f",
                job_id, (time.monotonic() - t0) * 1000,
            )

    async def _execute(self, job_id: str, document: Document, options: ExtractionOptions) -> None:
        job = self._store.get(job_id)

        # --- Phase 1: derive units ---
        if options.mode == ExtractionMode.VISION:
            units = await self._vision_units(job_id, document, options)
        else:
            units = await self._text_units(job_id, document)

        if not units:
            raise NoExtractableUnits("No pages or text could be extracted from the document")

        total = len(units)
        job.total_units = total
        self._emit(
            job_id, JobStage.CALLING_AI, f"Extracting questions from {total} unit(s)",
            current=0, total=total,
        )

        # --- Phase 2: one AI call per unit ---
        success = failed = 0
        for unit in units:
            unit_failed = False
            try:
                questions = await self._extract_unit(unit, options, total)
            except UnitExtractionFailed as exc:
                unit_failed = True
                failed += 1
                questions = []
                job.errors.append(UnitError(unit=unit.number, kind=unit.kind, code=exc.code, message=exc.message))
                logger.warning(
                    "Orchestrator | unit failed job_id=%s unit=%d kind=%s error=%s",
                    job_id, unit.number, unit.kind, exc.message,
                )
            else:
                success += 1
                job.accumulated_questions.extend(questions)

            job.completed_units += 1
            outcome = "failed" if unit_failed else f"{len(questions)} question(s)"
            self._emit(
                job_id, JobStage.CALLING_AI,
                f"{unit.kind.capitalize()} {unit.number}/{total}: {outcome}",
                current=job.completed_units, total=total,
                meta={
                    "unit": unit.number,
                    "kind": unit.kind,
                    "questions": len(questions),
                    "failed": unit_failed,
                },
            )

        # --- Phase 3: reconcile + persist ---
        merged = merge_and_dedupe(job.accumulated_questions)
        self._emit(
            job_id, JobStage.SAVING_QUESTIONS, f"Saving {len(merged)} question(s)",
            current=total, total=total,
        )
        try:
            question_ids = await self._questions.save(merged, job_id=job_id)
        except Exception as exc:
            logger.exception("Orchestrator | question store failed job_id=%s", job_id)
            raise ExtractionError(f"Saving questions failed: {exc}") from exc

        # --- Phase 4: terminal event ---
        summary = ExtractionSummary(
            success=success,
            failed=failed,
            question_count=len(question_ids),
            question_ids=question_ids,
            errors=list(job.errors),
        )
        self._store.append(job_id, CompleteEvent(result=summary, download_url=f"/api/v1/extractions/{job_id}"))
        logger.info(
            "Orchestrator | complete job_id=%s units=%d success=%d failed=%d questions=%d",
            job_id, total, success, failed, len(question_ids),
        )

    # -----------------------------------------------------------------------
    # Unit derivation
    # -----------------------------------------------------------------------

    async def _vision_units(
        self, job_id: str, document: Document, options: ExtractionOptions,
    ) -> list[WorkUnit]:
        loop = asyncio.get_event_loop()

        if document.media_type == MediaType.IMAGE:
            self._emit(job_id, JobStage.RASTERIZING, "Preparing image")
            slices = await loop.run_in_executor(
                None,
                partial(
                    self._images.split_tall_image,
                    document.data,
                    max_height=settings.tall_image_max_height_px,
                    slice_height=settings.tall_image_slice_height_px,
                    overlap=settings.tall_image_overlap_px,
                ),
            )
            if len(slices) == 1:
                return [WorkUnit(number=1, kind="page", image=slices[0], mime_type=document.mime_type)]
            return [WorkUnit(number=i, kind="slice", image=s) for i, s in enumerate(slices, start=1)]

        dpi = options.dpi or document.dpi or settings.vision_raster_dpi
        self._emit(job_id, JobStage.RASTERIZING, f"Rasterizing PDF at {dpi} DPI")
        pages = await self._rasterizer.rasterize(document.data, dpi)
        images = [page.data for page in pages]

        if options.crop is None and options.stitch is None:
            return [WorkUnit(number=page.index, kind="page", image=page.data) for page in pages]

        job = self._store.get(job_id)

        def record_crop_error(index: int, exc: Exception) -> None:
            code = getattr(exc, "code", "INVALID_CROP_RESULT")
            job.errors.append(UnitError(unit=index, kind="crop", code=code, message=str(exc)))

        processed = await loop.run_in_executor(
            None,
            partial(
                self._images.process_batch,
                images,
                crop=options.crop,
                stitch=options.stitch,
                on_crop_error=record_crop_error,
            ),
        )
        kind = "stitched" if len(processed) == 1 and len(images) > 1 else "page"
        return [WorkUnit(number=i, kind=kind, image=img) for i, img in enumerate(processed, start=1)]

    async def _text_units(self, job_id: str, document: Document) -> list[WorkUnit]:
        self._emit(job_id, JobStage.EXTRACTING, "Extracting text from PDF")
        loop = asyncio.get_event_loop()
        raw = await loop.run_in_executor(None, self._text.extract, document.data)
        text = normalize_text(raw)
        chunks = self._chunker.split(text)

        units: list[WorkUnit] = []
        for chunk in chunks:
            context = None
            if chunk.index > 0 and chunks[chunk.index - 1].looks_incomplete and self._widen_chars > 0:
                context = text[max(0, chunk.start - self._widen_chars):chunk.start] or None
            units.append(WorkUnit(number=chunk.index + 1, kind="chunk", text=chunk.text, context=context))

        logger.info(
            "Orchestrator | text units job_id=%s chars=%d chunks=%d widened=%d",
            job_id, len(text), len(units), sum(1 for u in units if u.context),
        )
        return units

    # -----------------------------------------------------------------------
    # Per-unit AI call: timeout covers all attempts
    # -----------------------------------------------------------------------

    async def _extract_unit(self, unit: WorkUnit, options: ExtractionOptions, total: int) -> list[QuestionCandidate]:
        try:
            return await asyncio.wait_for(
                self._attempt_unit(unit, options, total), timeout=self._unit_timeout,
            )
        except asyncio.TimeoutError:
            raise UnitExtractionFailed(
                f"AI call timed out after {self._unit_timeout:.0f}s", unit=unit.number,
            ) from None

    async def _attempt_unit(self, unit: WorkUnit, options: ExtractionOptions, total: int) -> list[QuestionCandidate]:
        last_error: Exception | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._call_extractor(unit, options, total)
            except Exception as exc:   # provider SDK errors are not a closed set
                last_error = exc
                logger.warning(
                    "Orchestrator | attempt failed unit=%d attempt=%d/%d error=%s: %s",
                    unit.number, attempt, self._max_attempts, type(exc).__name__, exc,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay)

        if isinstance(last_error, UnitExtractionFailed):
            message = last_error.message
        else:
            message = f"{type(last_error).__name__}: {last_error}"
        raise UnitExtractionFailed(message, unit=unit.number) from last_error

    async def _call_extractor(self, unit: WorkUnit, options: ExtractionOptions, total: int) -> list[QuestionCandidate]:
        if unit.image is not None:
            return await self._extractor.extract_from_image(
                unit.image, options.credential, prompt=options.prompt, mime_type=unit.mime_type,
            )
        return await self._extractor.extract_from_text(
            unit.text or "",
            options.credential,
            part=unit.number,
            total=total,
            prompt=options.prompt,
            context=unit.context,
        )

    # -----------------------------------------------------------------------
    # Event helpers
    # -----------------------------------------------------------------------

    def _emit(
        self,
        job_id:  str,
        stage:   JobStage,
        message: str,
        current: int = 0,
        total:   int = 0,
        meta:    dict | None = None,
    ) -> None:
        self._store.append(
            job_id,
            ProgressUpdate(stage=stage, current=current, total=total, message=message, meta=meta),
        )

    def _fail(self, job_id: str, message: str) -> None:
        job = self._store.get(job_id)
        if job.is_terminal:
            logger.debug("Orchestrator | ignoring failure after terminal event job_id=%s", job_id)
            return
        self._store.append(job_id, ErrorEvent(message=message, stage=job.stage))
