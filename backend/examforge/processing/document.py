"""
Uploaded document value object and media-type sniffing.

The media type is detected from magic bytes first and the filename extension
second. The client-supplied Content-Type is never trusted.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from enum import Enum


class MediaType(str, Enum):
    PDF   = "pdf"
    IMAGE = "image"


_MAGIC_BYTES: dict[bytes, str] = {
    b"%PDF":              "application/pdf",
    b"\x89PNG\r\n\x1a\n": "image/png",
    b"\xff\xd8\xff":      "image/jpeg",
    b"GIF87a":            "image/gif",
    b"GIF89a":            "image/gif",
    b"BM":                "image/bmp",
}

_IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff"}
)


@dataclass(frozen=True)
class Document:
    """
    An uploaded file, immutable for the lifetime of one extraction job.

    ``dpi`` is only consulted when a PDF is rasterized.
    """
    data:       bytes
    media_type: MediaType
    mime_type:  str
    filename:   str = "upload"
    dpi:        int | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def detect_mime_type(filename: str, file_head: bytes) -> str:
    """Magic bytes first, then the extension. Unknown → application/octet-stream."""
    for magic, mime in _MAGIC_BYTES.items():
        if file_head.startswith(magic):
            return mime

    # WEBP: "RIFF" <size> "WEBP"
    if file_head[:4] == b"RIFF" and file_head[8:12] == b"WEBP":
        return "image/webp"

    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def classify_media_type(mime_type: str) -> MediaType | None:
    """Map a MIME type onto the two media types the pipeline accepts."""
    if mime_type == "application/pdf":
        return MediaType.PDF
    if mime_type.startswith("image/"):
        return MediaType.IMAGE
    return None


def sniff_document(data: bytes, filename: str = "upload", dpi: int | None = None) -> Document | None:
    """
    Build a Document from raw upload bytes, or return None when the bytes are
    neither a PDF nor a raster image.
    """
    mime = detect_mime_type(filename, data[:16])
    media_type = classify_media_type(mime)
    if media_type is None:
        ext = _get_extension(filename)
        if ext == ".pdf":
            media_type, mime = MediaType.PDF, "application/pdf"
        elif ext in _IMAGE_EXTENSIONS:
            media_type = MediaType.IMAGE
        else:
            return None
    return Document(data=data, media_type=media_type, mime_type=mime, filename=filename, dpi=dpi)


def _get_extension(filename: str) -> str:
    """Return lowercased file extension including the dot."""
    parts = (filename or "").rsplit(".", 1)
    return f".{parts[-1].lower()}" if len(parts) == 2 else ""
