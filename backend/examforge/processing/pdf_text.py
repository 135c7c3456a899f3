"""
PDF Text Extractor: positioned text runs → per-page plain text
════════════════════════════════════════════════════════════════

Pipeline per document:

  PyMuPDF spans ──► TextRun(text, vertical_position, page_number)
                      │
                      ▼  group by page, sort by vertical_position DESC
                      │
                      ▼  band filter (pluggable; default drops top/bottom 10 %)
                      │
                      ▼  "--- Page N ---\\n" + runs joined by single spaces

Coordinate convention
─────────────────────
PyMuPDF measures y downward from the top edge. Runs are stored with
``vertical_position = page_height − y`` so a larger value means higher on the
page, and "top-to-bottom" is a descending sort.

The band filter is a heuristic. It works on the observed range of run
positions, not the page box, and will occasionally discard a real line that
sits close to the first or last line of the page.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from examforge.core.config import settings
from examforge.core.errors import ParseError

logger = logging.getLogger(__name__)

PAGE_HEADER_TEMPLATE = "--- Page {number} ---"


@dataclass(frozen=True)
class TextRun:
    text:              str
    vertical_position: float   # higher = nearer the top of the page
    page_number:       int     # 1-based


BandFilter = Callable[[list[TextRun]], list[TextRun]]


# ---------------------------------------------------------------------------
# Heuristics: pure functions
# ---------------------------------------------------------------------------

def strip_header_footer(runs: list[TextRun], band: float = 0.10) -> list[TextRun]:
    """
    Drop runs in the top and bottom ``band`` fraction of the page's observed
    vertical range.

    ``runs`` must all belong to one page. A page whose runs share a single
    position (zero range) keeps everything.
    """
    if not runs:
        return []

    positions = [r.vertical_position for r in runs]
    top, bottom = max(positions), min(positions)
    span = top - bottom

    header_threshold = top - span * band
    footer_threshold = bottom + span * band
    return [
        r for r in runs
        if footer_threshold <= r.vertical_position <= header_threshold
    ]


def sort_top_to_bottom(runs: list[TextRun]) -> list[TextRun]:
    """Stable: runs on the same line keep document order."""
    return sorted(runs, key=lambda r: r.vertical_position, reverse=True)


def render_page(page_number: int, runs: list[TextRun]) -> str | None:
    """Join run texts with single spaces; None when nothing but whitespace remains."""
    body = " ".join(t for t in (r.text.strip() for r in runs) if t)
    if not body:
        return None
    return f"{PAGE_HEADER_TEMPLATE.format(number=page_number)}\n{body}"


# ---------------------------------------------------------------------------
# PdfTextExtractor
# ---------------------------------------------------------------------------

class PdfTextExtractor:
    """
    Synchronous and CPU-bound; async callers run ``extract`` in an executor.

    Usage::

        extractor = PdfTextExtractor()
        text = extractor.extract(pdf_bytes)
        # "--- Page 1 ---\\nQ1 ... \\n\\n--- Page 2 ---\\n..."
    """

    def __init__(self, band_filter: BandFilter | None = None) -> None:
        if band_filter is None:
            band = settings.header_footer_band
            band_filter = lambda runs: strip_header_footer(runs, band)  # noqa: E731
        self._band_filter = band_filter

    def extract(self, pdf_bytes: bytes) -> str:
        t0 = time.monotonic()
        by_page = self.extract_runs(pdf_bytes)

        sections: list[str] = []
        for page_number in sorted(by_page):
            runs = self._band_filter(sort_top_to_bottom(by_page[page_number]))
            section = render_page(page_number, runs)
            if section is not None:
                sections.append(section)

        logger.info(
            "PdfTextExtractor | pages=%d kept_pages=%d chars=%d elapsed_ms=%.0f",
            len(by_page), len(sections),
            sum(len(s) for s in sections), (time.monotonic() - t0) * 1000,
        )
        return "\n\n".join(sections)

    def extract_runs(self, pdf_bytes: bytes) -> dict[int, list[TextRun]]:
        """All text runs grouped by 1-based page number, in document order."""
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as exc:
            raise ParseError(f"not a readable PDF: {exc}") from exc

        by_page: dict[int, list[TextRun]] = {}
        with doc:
            for page_number, page in enumerate(doc, start=1):
                page_height = page.rect.height
                runs: list[TextRun] = []
                for block in page.get_text("dict").get("blocks", []):
                    for line in block.get("lines", []):
                        for span in line.get("spans", []):
                            text = span.get("text", "")
                            if not text:
                                continue
                            y = span["bbox"][1]
                            runs.append(TextRun(
                                text=text,
                                vertical_position=page_height - y,
                                page_number=page_number,
                            ))
                by_page[page_number] = runs
        return by_page
