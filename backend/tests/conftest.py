"""
Root conftest.py: Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : png_factory, pdf_factory, sample_pdf_bytes, sample_png_bytes,
                    credential, fake_extractor, fake_rasterizer, job_store,
                    question_store, make_orchestrator, app_with_overrides,
                    async_client

Environment strategy:
  - No test calls a real AI provider: the gateway is replaced by FakeExtractor.
  - No test needs pdftoppm unless marked ``slow``; FakeRasterizer stands in.
  - PDFs are built on the fly with PyMuPDF, images with Pillow.
  - Questions are saved to InMemoryQuestionStore (no QUESTION_STORE_URL).

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O)
  pytest -m integration           # API tests through the ASGI app
  pytest -m "not slow"            # skip tests that spawn pdftoppm
"""

from __future__ import annotations

import asyncio
import io
import os
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any examforge imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("APP_ENV",                  "development")
os.environ.setdefault("DEBUG",                    "false")
os.environ.setdefault("OPENAI_API_KEY",           "sk-test-key")
os.environ.setdefault("DEFAULT_AI_PROVIDER",      "openai")
os.environ.setdefault("DEFAULT_EXTRACTION_MODE",  "vision")
os.environ.setdefault("QUESTION_STORE_URL",       "")
os.environ.setdefault("UNIT_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("SSE_KEEPALIVE_SECONDS",    "0.2")

from examforge.llm.credentials import AICredential, Provider  # noqa: E402
from examforge.processing.rasterizer import RasterPage  # noqa: E402
from examforge.schemas.questions import QuestionCandidate  # noqa: E402
from examforge.services.jobs import JobStore  # noqa: E402
from examforge.services.orchestrator import ExtractionOrchestrator  # noqa: E402
from examforge.storage.questions import InMemoryQuestionStore  # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Documents
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def png_factory() -> Callable[..., bytes]:
    """Factory fixture: solid-colour PNG of the given size."""
    from PIL import Image

    def _build(width: int = 200, height: int = 100, color=(255, 0, 0), mode: str = "RGB") -> bytes:
        buf = io.BytesIO()
        Image.new(mode, (width, height), color).save(buf, format="PNG")
        return buf.getvalue()

    return _build


@pytest.fixture
def pdf_factory() -> Callable[..., bytes]:
    """
    Factory fixture: build a PDF with PyMuPDF.

    ``pages`` is a list of pages; each page is a list of (y, text) lines, with
    y measured from the top edge as PyMuPDF does. A page given as a plain
    string gets one line at y=100.
    """
    import fitz

    def _build(pages: list, width: float = 595, height: float = 842) -> bytes:
        doc = fitz.open()
        for page_spec in pages:
            page = doc.new_page(width=width, height=height)
            lines = [(100, page_spec)] if isinstance(page_spec, str) else page_spec
            for y, text in lines:
                page.insert_text((72, y), text, fontsize=11)
        data = doc.tobytes()
        doc.close()
        return data

    return _build


@pytest.fixture
def sample_pdf_bytes(pdf_factory) -> bytes:
    """Three pages, each with a running header and footer around the questions."""
    questions = [
        ["1. What is 2 + 2?", "A. 3 B. 4 C. 5 D. 6"],
        ["2. Water boils at 100 degrees Celsius at sea level.", "True or false?"],
        ["3. Name the largest planet in the solar system.", "Answer in one word."],
    ]
    return pdf_factory([
        [(40, "Sample Exam Paper"), (150, first), (170, second), (800, f"Page {n} of 3")]
        for n, (first, second) in enumerate(questions, start=1)
    ])


@pytest.fixture
def sample_png_bytes(png_factory) -> bytes:
    return png_factory(200, 100)


# ─────────────────────────────────────────────────────────────────────────────
# AI collaborator fakes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def credential() -> AICredential:
    return AICredential(
        provider=Provider.OPENAI,
        model="gpt-4o-mini",
        vision_model="gpt-4o",
        api_key="sk-test-key",
    )


class FakeExtractor:
    """
    Stands in for QuestionExtractionGateway.

    Every successful call returns one question whose content names the call,
    so nothing is de-duplicated away. Calls whose image bytes are in
    ``fail_on`` (or whose part number is in ``fail_parts``) raise.
    """

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.fail_on: set[bytes] = set()
        self.fail_parts: set[int] = set()
        self.delay: float = 0.0

    async def extract_from_image(self, image, credential, prompt=None, mime_type="image/png"):
        self.calls.append({"kind": "image", "image": image, "prompt": prompt, "mime_type": mime_type})
        if self.delay:
            await asyncio.sleep(self.delay)
        if image in self.fail_on:
            raise RuntimeError("model unavailable")
        return [QuestionCandidate(content=f"Question #{len(self.calls)} from call", type="single_choice")]

    async def extract_from_text(self, text, credential, part=1, total=1, prompt=None, context=None):
        self.calls.append({
            "kind": "text", "text": text, "part": part, "total": total,
            "prompt": prompt, "context": context,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if part in self.fail_parts:
            raise RuntimeError("model unavailable")
        return [QuestionCandidate(content=f"Question from part {part} of {total}", type="选择题")]


class FakeRasterizer:
    """Returns ``page_count`` tiny pages whose bytes are b"page-N"."""

    def __init__(self, page_count: int = 3) -> None:
        self.page_count = page_count
        self.dpis: list[int | None] = []
        self.error: Exception | None = None

    async def rasterize(self, pdf_bytes: bytes, dpi: int | None = None) -> list[RasterPage]:
        self.dpis.append(dpi)
        if self.error is not None:
            raise self.error
        return [
            RasterPage(index=n, width=10, height=10, data=f"page-{n}".encode())
            for n in range(1, self.page_count + 1)
        ]


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def fake_rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


# ─────────────────────────────────────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def job_store() -> JobStore:
    return JobStore(ttl_seconds=60)


@pytest.fixture
def question_store() -> InMemoryQuestionStore:
    return InMemoryQuestionStore()


@pytest.fixture
def make_orchestrator(job_store, fake_extractor, question_store, fake_rasterizer):
    """
    Factory fixture: ExtractionOrchestrator wired to the fakes. Keyword
    arguments override any constructor argument.
    """
    def _build(**overrides) -> ExtractionOrchestrator:
        kwargs = dict(
            store=job_store,
            extractor=fake_extractor,
            question_store=question_store,
            rasterizer=fake_rasterizer,
            unit_timeout=5.0,
            max_attempts=1,
            retry_delay=0.0,
            job_timeout=30.0,
        )
        kwargs.update(overrides)
        return ExtractionOrchestrator(**kwargs)

    return _build


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI app with overrides
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def app_with_overrides(job_store, make_orchestrator):
    """
    FastAPI app with the shared services overridden:
      - get_job_store    → job_store fixture
      - get_orchestrator → orchestrator wired to FakeExtractor / FakeRasterizer

    The credential store stays the real SettingsCredentialStore. Jobs still
    running at teardown are cancelled.
    """
    from examforge.api.dependencies import get_job_store, get_orchestrator
    from examforge.main import app

    orchestrator = make_orchestrator()
    app.dependency_overrides[get_job_store]    = lambda: job_store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    yield app

    app.dependency_overrides.clear()
    await orchestrator.shutdown()


@pytest_asyncio.fixture
async def async_client(app_with_overrides) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client using the overridden app (lifespan not run)."""
    from httpx import ASGITransport
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
