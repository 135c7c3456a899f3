"""
Page Rasterizer: PDF → one PNG per page via ``pdftoppm``
══════════════════════════════════════════════════════════

Each call owns a private temporary directory:

  TemporaryDirectory(prefix=…)
     ├── input.pdf          ← written from the request bytes
     ├── page-1.png         ┐
     ├── page-2.png         │  produced by: pdftoppm -png -r <dpi> input.pdf page
     └── page-10.png        ┘  (zero-padded on long documents: page-01.png …)

The directory is removed when the ``with`` block exits, whether the tool
succeeded, failed, timed out, or the task was cancelled.

Page order comes from the number embedded in each file name, never from a
lexical sort of the directory listing.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass, field

from examforge.core.config import settings
from examforge.core.errors import RasterizationFailed, UnreadableImage
from examforge.processing.images import image_size

logger = logging.getLogger(__name__)

_PAGE_FILE_RE = re.compile(r"^page-(\d+)\.png$")

# Longest stderr excerpt kept on RasterizationFailed
_MAX_DIAGNOSTICS_CHARS = 2000


@dataclass
class RasterPage:
    """One rendered page. ``index`` is 1-based and matches the source page order."""
    index:  int
    width:  int
    height: int
    data:   bytes = field(repr=False)   # PNG-encoded


def order_page_files(filenames: list[str]) -> list[tuple[int, str]]:
    """
    Pick the rasterizer's output files out of a directory listing and order them
    by their embedded page number.

    >>> order_page_files(["page-10.png", "page-2.png", "input.pdf", "page-1.png"])
    [(1, 'page-1.png'), (2, 'page-2.png'), (10, 'page-10.png')]
    """
    numbered = []
    for name in filenames:
        match = _PAGE_FILE_RE.match(name)
        if match:
            numbered.append((int(match.group(1)), name))
    numbered.sort(key=lambda item: item[0])
    return numbered


class PageRasterizer:
    """
    Async wrapper around the external rasterizer.

    Usage::

        rasterizer = PageRasterizer()
        pages = await rasterizer.rasterize(pdf_bytes, dpi=200)
    """

    def __init__(
        self,
        binary:          str | None = None,
        timeout_seconds: float | None = None,
        tmp_prefix:      str | None = None,
    ) -> None:
        self._binary  = binary or settings.rasterizer_binary
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.raster_timeout_seconds
        self._prefix  = tmp_prefix or settings.raster_tmp_prefix

    async def rasterize(self, pdf_bytes: bytes, dpi: int | None = None) -> list[RasterPage]:
        dpi = dpi or settings.raster_dpi
        if dpi <= 0:
            raise ValueError(f"dpi must be positive, got {dpi}")

        t0 = time.monotonic()
        with tempfile.TemporaryDirectory(prefix=self._prefix) as workdir:
            pdf_path   = os.path.join(workdir, "input.pdf")
            out_prefix = os.path.join(workdir, "page")

            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, _write_file, pdf_path, pdf_bytes)

            await self._run_tool(
                [self._binary, "-png", "-r", str(dpi), pdf_path, out_prefix]
            )

            pages = await loop.run_in_executor(None, _collect_pages, workdir)

        logger.info(
            "PageRasterizer | pages=%d dpi=%d elapsed_ms=%.0f",
            len(pages), dpi, (time.monotonic() - t0) * 1000,
        )
        return pages

    async def _run_tool(self, args: list[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise RasterizationFailed(
                f"rasterizer binary not found: {self._binary}", diagnostics=str(exc)
            ) from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RasterizationFailed(f"rasterizer timed out after {self._timeout}s")
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            diagnostics = (stderr or b"").decode("utf-8", errors="replace").strip()
            logger.warning(
                "PageRasterizer | tool failed returncode=%s stderr=%s",
                proc.returncode, diagnostics[:200],
            )
            raise RasterizationFailed(
                f"rasterizer exited with status {proc.returncode}",
                diagnostics=diagnostics[:_MAX_DIAGNOSTICS_CHARS],
            )


# ---------------------------------------------------------------------------
# Blocking helpers: run in the default thread executor
# ---------------------------------------------------------------------------

def _write_file(path: str, data: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(data)


def _collect_pages(workdir: str) -> list[RasterPage]:
    files = order_page_files(os.listdir(workdir))
    if not files:
        raise RasterizationFailed("rasterizer produced no pages")

    pages: list[RasterPage] = []
    for number, name in files:
        with open(os.path.join(workdir, name), "rb") as fh:
            data = fh.read()
        try:
            width, height = image_size(data)
        except UnreadableImage as exc:
            raise RasterizationFailed(f"page {number} is not a usable image", diagnostics=str(exc)) from exc
        pages.append(RasterPage(index=number, width=width, height=height, data=data))
    return pages
