"""
Document Processing Package
════════════════════════════

Leaf components of the extraction pipeline. None of them knows about jobs,
progress events or AI providers.

  Vision mode:  PDF → PageRasterizer → PageImageProcessor → page images
  Text mode:    PDF → PdfTextExtractor → TextChunker → text chunks

Modules
───────
  document.py    Document value object + magic-byte media sniffing
  rasterizer.py  PDF → PNG pages through the external pdftoppm tool
  images.py      Header/footer crop, vertical stitch, tall-image slicing (Pillow)
  pdf_text.py    Positioned text runs → per-page text with header/footer suppression (PyMuPDF)
  chunking.py    Bounded overlapping chunks + incomplete-chunk heuristic
"""

from examforge.processing.chunking import TextChunk, TextChunker, looks_incomplete, normalize_text
from examforge.processing.document import Document, MediaType, sniff_document
from examforge.processing.images import CropSpec, PageImageProcessor, StitchSpec
from examforge.processing.pdf_text import PdfTextExtractor, TextRun, strip_header_footer
from examforge.processing.rasterizer import PageRasterizer, RasterPage, order_page_files

__all__ = [
    "TextChunk",
    "TextChunker",
    "looks_incomplete",
    "normalize_text",
    "Document",
    "MediaType",
    "sniff_document",
    "CropSpec",
    "PageImageProcessor",
    "StitchSpec",
    "PdfTextExtractor",
    "TextRun",
    "strip_header_footer",
    "PageRasterizer",
    "RasterPage",
    "order_page_files",
]
