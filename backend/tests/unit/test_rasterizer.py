"""
Unit Tests: PageRasterizer
════════════════════════════
The external tool is replaced by a fake process that writes page-N.png files
into the output prefix it is given, the way pdftoppm does.

Coverage targets:
  ✅ page order follows the embedded number (1..12, not lexical)
  ✅ command line: -png -r <dpi> input.pdf <prefix>
  ✅ temporary directory removed on success and on failure
  ✅ non-zero exit → RasterizationFailed carrying stderr
  ✅ missing binary → RasterizationFailed
  ✅ timeout → process killed, RasterizationFailed
  ✅ zero pages produced → RasterizationFailed
  ✅ real pdftoppm end-to-end (slow, skipped when not installed)
"""

from __future__ import annotations

import asyncio
import io
import os
import shutil
from unittest.mock import patch

import pytest
from PIL import Image

from examforge.core.errors import RasterizationFailed
from examforge.processing.rasterizer import PageRasterizer, order_page_files


def _png(width: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, 20), (255, 255, 255)).save(buf, format="PNG")
    return buf.getvalue()


class _FakeProcess:
    """Mimics asyncio.subprocess.Process for the calls PageRasterizer makes."""

    def __init__(self, args, pages: int = 0, returncode: int = 0, stderr: bytes = b"", hang: bool = False):
        self.args = args
        self.returncode = None
        self._pages = pages
        self._final_returncode = returncode
        self._stderr = stderr
        self._hang = hang
        self.killed = False

    async def communicate(self):
        if self._hang:
            await asyncio.sleep(3600)
        out_prefix = self.args[-1]
        for n in range(1, self._pages + 1):
            # width encodes the page number so order can be checked after decoding
            with open(f"{out_prefix}-{n}.png", "wb") as fh:
                fh.write(_png(100 + n))
        self.returncode = self._final_returncode
        return b"", self._stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


def _spawner(record: list, **behaviour):
    async def _create_subprocess_exec(*args, **kwargs):
        proc = _FakeProcess(list(args), **behaviour)
        record.append(proc)
        return proc
    return _create_subprocess_exec


@pytest.mark.unit
class TestOrderPageFiles:

    def test_numeric_not_lexical(self):
        names = [f"page-{n}.png" for n in (10, 2, 1, 12, 11, 3)] + ["input.pdf", "page-x.png"]
        assert [n for n, _ in order_page_files(names)] == [1, 2, 3, 10, 11, 12]

    def test_zero_padded_names(self):
        assert order_page_files(["page-02.png", "page-10.png", "page-01.png"]) == [
            (1, "page-01.png"), (2, "page-02.png"), (10, "page-10.png"),
        ]


@pytest.mark.unit
class TestRasterize:

    async def test_twelve_pages_in_order(self):
        procs: list[_FakeProcess] = []
        rasterizer = PageRasterizer(binary="pdftoppm", timeout_seconds=5)

        with patch("asyncio.create_subprocess_exec", _spawner(procs, pages=12)):
            pages = await rasterizer.rasterize(b"%PDF-1.4 fake", dpi=150)

        assert [p.index for p in pages] == list(range(1, 13))
        assert [p.width for p in pages] == [100 + n for n in range(1, 13)]
        assert all(p.height == 20 for p in pages)

    async def test_command_line(self):
        procs: list[_FakeProcess] = []
        rasterizer = PageRasterizer(binary="/usr/bin/pdftoppm", timeout_seconds=5)

        with patch("asyncio.create_subprocess_exec", _spawner(procs, pages=1)):
            await rasterizer.rasterize(b"%PDF-1.4 fake", dpi=144)

        args = procs[0].args
        assert args[:4] == ["/usr/bin/pdftoppm", "-png", "-r", "144"]
        assert os.path.basename(args[4]) == "input.pdf"
        assert os.path.basename(args[5]) == "page"

    async def test_input_written_and_workdir_removed(self):
        procs: list[_FakeProcess] = []
        seen = {}

        async def _spawn(*args, **kwargs):
            with open(args[4], "rb") as fh:
                seen["input"] = fh.read()
            seen["workdir"] = os.path.dirname(args[4])
            proc = _FakeProcess(list(args), pages=2)
            procs.append(proc)
            return proc

        with patch("asyncio.create_subprocess_exec", _spawn):
            await PageRasterizer(timeout_seconds=5).rasterize(b"%PDF-1.4 payload", dpi=72)

        assert seen["input"] == b"%PDF-1.4 payload"
        assert not os.path.exists(seen["workdir"])

    async def test_nonzero_exit_carries_diagnostics(self):
        procs: list[_FakeProcess] = []
        spawn = _spawner(procs, returncode=1, stderr=b"Syntax Error: Couldn't find trailer dictionary")

        with patch("asyncio.create_subprocess_exec", spawn):
            with pytest.raises(RasterizationFailed) as exc_info:
                await PageRasterizer(timeout_seconds=5).rasterize(b"not a pdf", dpi=72)

        assert "trailer dictionary" in exc_info.value.diagnostics
        assert "trailer dictionary" in str(exc_info.value)
        assert not os.path.exists(os.path.dirname(procs[0].args[4]))

    async def test_missing_binary(self):
        async def _spawn(*args, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", args[0])

        with patch("asyncio.create_subprocess_exec", _spawn):
            with pytest.raises(RasterizationFailed, match="not found"):
                await PageRasterizer(binary="no-such-tool", timeout_seconds=5).rasterize(b"%PDF", dpi=72)

    async def test_timeout_kills_process(self):
        procs: list[_FakeProcess] = []

        with patch("asyncio.create_subprocess_exec", _spawner(procs, hang=True)):
            with pytest.raises(RasterizationFailed, match="timed out"):
                await PageRasterizer(timeout_seconds=0.05).rasterize(b"%PDF", dpi=72)

        assert procs[0].killed

    async def test_no_pages_produced(self):
        with patch("asyncio.create_subprocess_exec", _spawner([], pages=0)):
            with pytest.raises(RasterizationFailed, match="no pages"):
                await PageRasterizer(timeout_seconds=5).rasterize(b"%PDF", dpi=72)

    async def test_negative_dpi_rejected(self):
        with pytest.raises(ValueError):
            await PageRasterizer().rasterize(b"%PDF", dpi=-10)


@pytest.mark.slow
@pytest.mark.skipif(shutil.which("pdftoppm") is None, reason="pdftoppm not installed")
class TestRealPdftoppm:

    async def test_renders_every_page(self, pdf_factory):
        pdf = pdf_factory(["first", "second", "third"], width=200, height=100)
        pages = await PageRasterizer(timeout_seconds=60).rasterize(pdf, dpi=72)

        assert [p.index for p in pages] == [1, 2, 3]
        assert (pages[0].width, pages[0].height) == (200, 100)
