"""
Unit Tests: PageImageProcessor
════════════════════════════════
Crop, stitch, batch contract and tall-image slicing on real Pillow images.

Coverage targets:
  ✅ crop 10% / 10% of a 1000 px page → 800 px, width unchanged
  ✅ crop rounding: pixel bands floor independently
  ✅ crop summing to ≥ 100 → InvalidCropResult
  ✅ undecodable bytes / zero-size → UnreadableImage
  ✅ stitch widths 800/600 → canvas 800 wide, narrow page centred on white
  ✅ stitch spacing adds (n − 1) × spacing rows
  ✅ stitch single image → returned unchanged; empty list → ValueError
  ✅ process_batch output-count contract (identity / per-page / single)
  ✅ per-page crop failure reported through the callback, page passes through
  ✅ split_tall_image slices overlap and cover the whole image
"""

from __future__ import annotations

import io

import pytest
from PIL import Image

from examforge.core.errors import InvalidCropResult, UnreadableImage
from examforge.processing.images import (
    CropSpec,
    PageImageProcessor,
    StitchSpec,
    image_size,
)


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


@pytest.fixture
def processor() -> PageImageProcessor:
    return PageImageProcessor()


# ─────────────────────────────────────────────────────────────────────────────
# Specs
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestSpecs:

    def test_crop_spec_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            CropSpec(top_percent=-1)
        with pytest.raises(ValueError):
            CropSpec(bottom_percent=100)

    def test_crop_spec_noop(self):
        assert CropSpec().is_noop
        assert not CropSpec(top_percent=5).is_noop

    def test_stitch_spec_rejects_negative_spacing(self):
        with pytest.raises(ValueError):
            StitchSpec(spacing_px=-1)


# ─────────────────────────────────────────────────────────────────────────────
# crop
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestCrop:

    def test_crop_ten_percent_each_side(self, processor, png_factory):
        out = processor.crop(png_factory(400, 1000), CropSpec(10, 10))
        assert image_size(out) == (400, 800)

    def test_crop_keeps_middle_rows(self, processor):
        img = Image.new("RGB", (10, 100), (0, 0, 255))
        for y in range(10):
            for x in range(10):
                img.putpixel((x, y), (255, 0, 0))
        buf = io.BytesIO()
        img.save(buf, format="PNG")

        out = _decode(processor.crop(buf.getvalue(), CropSpec(10, 0)))
        assert out.size == (10, 90)
        assert out.convert("RGB").getpixel((0, 0)) == (0, 0, 255)

    def test_crop_bands_floor_independently(self, processor, png_factory):
        # 999 * 10 // 100 = 99 per band
        out = processor.crop(png_factory(50, 999), CropSpec(10, 10))
        assert image_size(out) == (50, 999 - 99 - 99)

    def test_crop_output_is_png(self, processor, png_factory):
        out = processor.crop(png_factory(), CropSpec(5, 5))
        assert out.startswith(b"\x89PNG\r\n\x1a\n")

    def test_crop_sum_at_100_rejected(self, processor, png_factory):
        with pytest.raises(InvalidCropResult):
            processor.crop(png_factory(), CropSpec(60, 40))

    def test_crop_near_100_keeps_at_least_one_row(self, processor, png_factory):
        out = processor.crop(png_factory(10, 2), CropSpec(50, 49.99))
        assert image_size(out) == (10, 1)

    def test_crop_undecodable_raises(self, processor):
        with pytest.raises(UnreadableImage):
            processor.crop(b"definitely not an image", CropSpec(10, 10))


# ─────────────────────────────────────────────────────────────────────────────
# stitch
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestStitch:

    def test_stitch_widths_and_centering(self, processor, png_factory):
        wide   = png_factory(800, 100, color=(255, 0, 0))
        narrow = png_factory(600, 50, color=(0, 0, 255))

        out = _decode(processor.stitch([wide, narrow]))

        assert out.size == (800, 150)
        assert out.getpixel((400, 50)) == (255, 0, 0)
        # narrow page occupies x 100..699 on rows 100..149; margins are white
        assert out.getpixel((50, 120)) == (255, 255, 255)
        assert out.getpixel((100, 120)) == (0, 0, 255)
        assert out.getpixel((699, 120)) == (0, 0, 255)
        assert out.getpixel((750, 120)) == (255, 255, 255)

    def test_stitch_spacing(self, processor, png_factory):
        images = [png_factory(100, 100) for _ in range(3)]
        out = _decode(processor.stitch(images, StitchSpec(spacing_px=20)))
        assert out.size == (100, 300 + 2 * 20)
        assert out.getpixel((50, 110)) == (255, 255, 255)

    def test_stitch_transparent_page_on_white(self, processor, png_factory):
        clear = png_factory(100, 10, color=(0, 0, 0, 0), mode="RGBA")
        solid = png_factory(100, 10)
        out = _decode(processor.stitch([clear, solid]))
        assert out.getpixel((50, 5)) == (255, 255, 255)

    def test_stitch_single_image_unchanged(self, processor, sample_png_bytes):
        assert processor.stitch([sample_png_bytes]) is sample_png_bytes

    def test_stitch_empty_rejected(self, processor):
        with pytest.raises(ValueError, match="No images to stitch"):
            processor.stitch([])


# ─────────────────────────────────────────────────────────────────────────────
# process_batch
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestProcessBatch:

    def test_no_options_returns_input(self, processor, png_factory):
        images = [png_factory(), png_factory()]
        assert processor.process_batch(images) is images

    def test_noop_crop_single_stitch_returns_input(self, processor, sample_png_bytes):
        images = [sample_png_bytes]
        out = processor.process_batch(images, crop=CropSpec(), stitch=StitchSpec())
        assert out is images

    def test_crop_only_keeps_count(self, processor, png_factory):
        images = [png_factory(100, 200) for _ in range(4)]
        out = processor.process_batch(images, crop=CropSpec(25, 25))
        assert len(out) == 4
        assert all(image_size(img) == (100, 100) for img in out)

    def test_stitch_returns_exactly_one(self, processor, png_factory):
        images = [png_factory(100, 100) for _ in range(5)]
        out = processor.process_batch(images, crop=CropSpec(10, 10), stitch=StitchSpec(4))
        assert len(out) == 1
        assert image_size(out[0]) == (100, 5 * 80 + 4 * 4)

    def test_crop_error_reported_through_callback(self, processor, png_factory):
        good = png_factory(100, 100)
        errors = []

        out = processor.process_batch(
            [good, b"garbage"],
            crop=CropSpec(10, 10),
            on_crop_error=lambda index, exc: errors.append((index, type(exc))),
        )

        assert errors == [(2, UnreadableImage)]
        assert image_size(out[0]) == (100, 80)
        assert out[1] == b"garbage"

    def test_crop_error_without_callback_propagates(self, processor, png_factory):
        with pytest.raises(UnreadableImage):
            processor.process_batch([png_factory(), b"garbage"], crop=CropSpec(10, 10))

    def test_single_image_crop_error_is_fatal(self, processor):
        with pytest.raises(UnreadableImage):
            processor.process_batch(
                [b"garbage"], crop=CropSpec(10, 10), on_crop_error=lambda i, e: None,
            )


# ─────────────────────────────────────────────────────────────────────────────
# split_tall_image
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestSplitTallImage:

    def test_short_image_returned_as_is(self, processor, sample_png_bytes):
        assert processor.split_tall_image(sample_png_bytes) == [sample_png_bytes]

    def test_tall_image_sliced_with_overlap(self, processor, png_factory):
        slices = processor.split_tall_image(
            png_factory(50, 5000), max_height=3000, slice_height=2000, overlap=400,
        )
        heights = [image_size(s)[1] for s in slices]
        # tops: 0, 1600, 3200 → bottoms 2000, 3600, 5000
        assert heights == [2000, 2000, 1800]
        assert all(image_size(s)[0] == 50 for s in slices)

    def test_overlap_must_be_smaller_than_slice(self, processor, sample_png_bytes):
        with pytest.raises(ValueError):
            processor.split_tall_image(sample_png_bytes, slice_height=100, overlap=100)
