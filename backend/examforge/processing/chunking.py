"""
Text Chunker: Bounded, Overlapping Windows for One AI Call Each
══════════════════════════════════════════════════════════════════

Why overlap?
────────────
  An exam paper is one long run of numbered questions. Any fixed cut point
  eventually lands inside a question:

    "12. Which of the following is a prime number?  A. 21  B. 33
    [CHUNK BREAK]
    C. 37  D. 49"

  Each chunk therefore starts ``overlap_chars`` before the previous one ended,
  so a question severed at the cut is present in full in at least one of the
  two neighbours. Duplicates created this way are removed later by the
  orchestrator's reconciliation step, not here.

Cut selection
─────────────
  1. Hard ceiling at ``start + max_chars``.
  2. Inside the last ``boundary_window`` characters before the ceiling, prefer
     the latest page marker ("--- Page N ---") or blank line.
  3. Otherwise cut exactly at the ceiling.

Guarantees
──────────
  - chunk.text == text[chunk.start:chunk.end]; len(chunk.text) ≤ max_chars
  - chunks[i + 1].start == chunks[i].end − overlap_chars
  - chunks[0].text + "".join(c.fresh_text for c in chunks[1:]) == text

Incomplete-chunk detection
──────────────────────────
  ``looks_incomplete`` flags a chunk that seems to stop mid-sentence or in the
  middle of an option list. It is advisory: the orchestrator uses it to give the
  next AI call extra leading context. It never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from examforge.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Boundary patterns
# ---------------------------------------------------------------------------

# Cut *before* a page marker so it leads the next chunk
_PAGE_MARKER_RE = re.compile(r"^--- Page \d+ ---", re.MULTILINE)

# Cut *after* a blank line
_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n")

# Chunk tail ends on a bare option label: "... B", "... C.", "... D、"
_OPTION_LABEL_END_RE = re.compile(r"\b[A-D][.．、:：]?\s*$")
_OPTION_LABEL_RE = re.compile(r"(?:^|\s)([A-D])[.．、]")

_SENTENCE_FINAL = ".!?。！？…"
_TRAILING_CLOSERS = "\"'”’)]）】」』"
_DANGLING = "（(，,、:：;；"

# How much of the chunk tail the heuristic inspects
_TAIL_CHARS = 200


@dataclass
class TextChunk:
    """
    One AI-sized window of extracted text.

    index            : 0-based position
    text             : exactly text[start:end] of the source
    overlap_chars    : leading characters shared with the previous chunk
    looks_incomplete : advisory, see looks_incomplete()
    page_number      : page whose marker most recently precedes ``start``
    """
    index:            int
    text:             str
    start:            int
    end:              int
    overlap_chars:    int = 0
    looks_incomplete: bool = False
    page_number:      int = 1

    @property
    def approximate_char_length(self) -> int:
        return len(self.text)

    @property
    def fresh_text(self) -> str:
        """The part of the chunk not already present in the previous one."""
        return self.text[self.overlap_chars:]


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

def looks_incomplete(text: str) -> bool:
    """
    True when ``text`` seems to stop mid-question.

    Signals, checked on the last 200 characters:
      - ends on a bare option label (``A``, ``B.``, ``C、``)
      - ends on an opening bracket or a comma/colon-type separator
      - exactly one option label is present (list started, not finished)
      - does not end on sentence-final punctuation (closing quotes and
        brackets after the punctuation are allowed)
    """
    tail = (text or "").strip()[-_TAIL_CHARS:]
    if not tail:
        return False

    if _OPTION_LABEL_END_RE.search(tail):
        return True
    if tail[-1] in _DANGLING:
        return True
    if len(set(_OPTION_LABEL_RE.findall(tail))) == 1:
        return True

    last = tail.rstrip(_TRAILING_CLOSERS)[-1:]
    return bool(last) and last not in _SENTENCE_FINAL


IncompleteDetector = Callable[[str], bool]


def normalize_text(text: str) -> str:
    """
    Strip carriage returns, collapse runs of spaces/tabs, collapse 3+ newlines
    to one blank line. Page markers and paragraph breaks survive.
    """
    text = text.replace("\r", "")
    text = re.sub(r"[ \t\u00a0\u200b\ufeff]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# TextChunker
# ---------------------------------------------------------------------------

class TextChunker:
    """
    Usage::

        chunker = TextChunker(max_chars=6000, overlap_chars=300)
        for chunk in chunker.split(text):
            ...
    """

    def __init__(
        self,
        max_chars:       int | None = None,
        overlap_chars:   int | None = None,
        boundary_window: int | None = None,
        detector:        IncompleteDetector = looks_incomplete,
    ) -> None:
        self.max_chars       = max_chars if max_chars is not None else settings.chunk_max_chars
        self.overlap_chars   = overlap_chars if overlap_chars is not None else settings.chunk_overlap_chars
        self.boundary_window = (
            boundary_window if boundary_window is not None
            else min(settings.chunk_boundary_window_chars, self.max_chars // 2)
        )
        self._detector = detector

        if self.max_chars <= 0:
            raise ValueError("max_chars must be positive")
        if not 0 <= self.overlap_chars < self.max_chars:
            raise ValueError("overlap_chars must be in [0, max_chars)")
        if self.boundary_window < 0:
            raise ValueError("boundary_window must be >= 0")

    def split(self, text: str) -> list[TextChunk]:
        if not text:
            return []

        chunks: list[TextChunk] = []
        length = len(text)
        start = 0
        overlap = 0
        page = 1

        while True:
            limit = start + self.max_chars
            end = length if limit >= length else self._find_cut(text, start, limit)

            body = text[start:end]
            page = _last_page_number(text, start, page)
            chunks.append(TextChunk(
                index=len(chunks),
                text=body,
                start=start,
                end=end,
                overlap_chars=overlap,
                looks_incomplete=end < length and self._safe_detect(body),
                page_number=page,
            ))

            if end >= length:
                break
            start = end - self.overlap_chars
            overlap = self.overlap_chars

        logger.debug(
            "TextChunker | chars=%d chunks=%d max=%d overlap=%d",
            length, len(chunks), self.max_chars, self.overlap_chars,
        )
        return chunks

    def _find_cut(self, text: str, start: int, limit: int) -> int:
        # A cut at or before start + overlap would not advance the next chunk
        lo = max(limit - self.boundary_window, start + self.overlap_chars + 1)
        if lo >= limit:
            return limit

        best = -1
        window = text[lo:limit]
        for match in _PARAGRAPH_RE.finditer(window):
            best = max(best, lo + match.end())
        for match in _PAGE_MARKER_RE.finditer(window):
            if match.start() > 0:
                best = max(best, lo + match.start())

        return best if best > start + self.overlap_chars else limit

    def _safe_detect(self, body: str) -> bool:
        try:
            return bool(self._detector(body))
        except Exception as exc:   # pluggable detector; a failure counts as "complete"
            logger.warning("TextChunker | incomplete detector failed: %s", exc)
            return False


def _last_page_number(text: str, offset: int, default: int) -> int:
    """Number of the last page marker starting at or before ``offset``."""
    marker = text.rfind("--- Page ", 0, offset + len("--- Page "))
    if marker == -1:
        return default
    match = _PAGE_MARKER_RE.match(text, marker)
    if match is None:
        return default
    return int(re.search(r"\d+", match.group(0)).group(0))
