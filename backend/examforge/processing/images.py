"""
Page Image Processor: header/footer cropping and vertical stitching
═════════════════════════════════════════════════════════════════════

All images cross this module as encoded byte buffers (PNG on output) so the
orchestrator never holds decoded pixel data between stages.

  crop()           remove top/bottom percentage bands from one page
  stitch()         stack pages into one white canvas, horizontally centred
  process_batch()  crop-then-stitch with the exact output-count contract:

      no crop, no multi-image stitch   → input list returned as-is
      crop only                        → one cropped image per input
      stitch with ≥ 2 images           → exactly one image

  split_tall_image()  slice one very tall image into overlapping bands
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Callable

from PIL import Image, UnidentifiedImageError

from examforge.core.errors import InvalidCropResult, UnreadableImage

logger = logging.getLogger(__name__)

_BACKGROUND = (255, 255, 255)


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CropSpec:
    """
    Percentages of the page height to remove from the top and bottom.

    Each value must lie in [0, 100). The sum is checked by crop(), which
    raises InvalidCropResult once it reaches 100.
    """
    top_percent:    float = 0.0
    bottom_percent: float = 0.0

    def __post_init__(self) -> None:
        for name in ("top_percent", "bottom_percent"):
            value = getattr(self, name)
            if not 0 <= value < 100:
                raise ValueError(f"{name} must be in [0, 100), got {value}")

    @property
    def is_noop(self) -> bool:
        return self.top_percent == 0 and self.bottom_percent == 0


@dataclass(frozen=True)
class StitchSpec:
    spacing_px: int = 0

    def __post_init__(self) -> None:
        if self.spacing_px < 0:
            raise ValueError(f"spacing_px must be >= 0, got {self.spacing_px}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise UnreadableImage(f"cannot decode image: {exc}") from exc

    width, height = img.size
    if not width or not height:
        raise UnreadableImage(f"image has no usable dimensions ({width}x{height})")
    return img


def _encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def image_size(data: bytes) -> tuple[int, int]:
    """(width, height) of an encoded image; raises UnreadableImage."""
    return _open(data).size


# ---------------------------------------------------------------------------
# PageImageProcessor
# ---------------------------------------------------------------------------

class PageImageProcessor:
    """
    Stateless; every method is synchronous and CPU-bound. Async callers should
    run it in an executor.
    """

    def crop(self, image: bytes, spec: CropSpec) -> bytes:
        img = _open(image)
        width, height = img.size

        if spec.top_percent + spec.bottom_percent >= 100:
            raise InvalidCropResult(
                f"crop removes {spec.top_percent + spec.bottom_percent}% of the page"
            )

        top_px    = int(height * spec.top_percent // 100)
        bottom_px = int(height * spec.bottom_percent // 100)
        new_height = height - top_px - bottom_px
        if new_height <= 0:
            raise InvalidCropResult(
                f"crop leaves no content (height={height} top={top_px} bottom={bottom_px})"
            )

        cropped = img.crop((0, top_px, width, top_px + new_height))
        return _encode_png(cropped)

    def stitch(self, images: list[bytes], spec: StitchSpec | None = None) -> bytes:
        if not images:
            raise ValueError("No images to stitch")
        if len(images) == 1:
            return images[0]

        spacing = (spec or StitchSpec()).spacing_px
        decoded = [_open(data) for data in images]

        canvas_width  = max(img.width for img in decoded)
        canvas_height = sum(img.height for img in decoded) + spacing * (len(decoded) - 1)
        canvas = Image.new("RGB", (canvas_width, canvas_height), _BACKGROUND)

        y_offset = 0
        for img in decoded:
            left = (canvas_width - img.width) // 2
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                canvas.paste(rgba, (left, y_offset), rgba)
            else:
                canvas.paste(img.convert("RGB"), (left, y_offset))
            y_offset += img.height + spacing

        logger.debug(
            "PageImageProcessor | stitched count=%d size=%dx%d",
            len(decoded), canvas_width, canvas_height,
        )
        return _encode_png(canvas)

    def process_batch(
        self,
        images: list[bytes],
        crop: CropSpec | None = None,
        stitch: StitchSpec | None = None,
        on_crop_error: Callable[[int, Exception], None] | None = None,
    ) -> list[bytes]:
        """
        Crop-then-stitch.

        ``on_crop_error`` (optional) receives (page_index, error) for a page that
        cannot be cropped; that page then passes through uncropped. Without a
        callback, or when the batch holds a single image, crop errors propagate.
        """
        should_crop   = crop is not None and not crop.is_noop
        should_stitch = stitch is not None and len(images) > 1

        if not should_crop and not should_stitch:
            return images

        processed = images
        if should_crop:
            processed = []
            for index, data in enumerate(images, start=1):
                try:
                    processed.append(self.crop(data, crop))
                except (InvalidCropResult, UnreadableImage) as exc:
                    if on_crop_error is None or len(images) == 1:
                        raise
                    on_crop_error(index, exc)
                    processed.append(data)

        if should_stitch:
            return [self.stitch(processed, stitch)]
        return processed

    def split_tall_image(
        self,
        image: bytes,
        max_height: int = 3000,
        slice_height: int = 2000,
        overlap: int = 400,
    ) -> list[bytes]:
        """
        Slice an image taller than ``max_height`` into bands of ``slice_height``
        that overlap by ``overlap`` pixels. Shorter images are returned as-is.
        """
        if overlap >= slice_height:
            raise ValueError("overlap must be smaller than slice_height")

        img = _open(image)
        width, height = img.size
        if height <= max_height:
            return [image]

        slices: list[bytes] = []
        top = 0
        while top < height:
            bottom = min(top + slice_height, height)
            slices.append(_encode_png(img.crop((0, top, width, bottom))))
            if bottom >= height:
                break
            top = bottom - overlap

        logger.info(
            "PageImageProcessor | split tall image height=%d slices=%d",
            height, len(slices),
        )
        return slices
