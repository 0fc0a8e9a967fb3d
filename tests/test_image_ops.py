import numpy as np
import pytest
from PIL import Image

from sheet_scan import image_ops
from sheet_scan.image_ops import (
    detect_document_boundary, enhance_image, split_pages, slice_bounds,
    find_brightness_gap, find_gap_runs, decode_image, sniff_mime_type,
    split_image_vertical, ImageProcessingError
)

from conftest import sheet_array, to_bytes


def white_with_block(width, height, box):
    arr = np.full((height, width, 3), 255, dtype=np.uint8)
    left, top, right, bottom = box
    arr[top:bottom, left:right] = 0
    return Image.fromarray(arr)


def two_pages_with_gap(width, height, gap_left, gap_right):
    arr = np.full((height, width, 3), 90, dtype=np.uint8)
    arr[:, gap_left:gap_right] = 255
    return Image.fromarray(arr)


def test_boundary_crops_to_large_document_region(settings):
    image = white_with_block(400, 300, (40, 30, 360, 270))

    result = detect_document_boundary(image, settings)

    assert result.width < 400 and result.height < 300
    assert result.width >= 320 and result.height >= 240


def test_boundary_keeps_full_frame_reencoded_when_region_is_small(settings):
    image = white_with_block(400, 300, (150, 100, 250, 200))

    result = detect_document_boundary(image, settings)

    assert result is not image
    assert result.size == image.size
    assert result.mode == "RGB"


def test_boundary_never_grows_image(settings):
    image = Image.fromarray(sheet_array(640, 480))

    result = detect_document_boundary(image, settings)

    assert result.width <= 640 and result.height <= 480


def test_enhance_twice_does_not_raise():
    image = Image.fromarray(sheet_array(300, 400))

    once = enhance_image(image)
    twice = enhance_image(once)

    assert twice.size == image.size


def test_enhance_returns_input_on_failure(monkeypatch):
    image = Image.fromarray(sheet_array(300, 400))

    def broken(*args, **kwargs):
        raise OSError("broken")

    monkeypatch.setattr(image_ops.ImageOps, "autocontrast", broken)

    assert enhance_image(image) is image


def test_boundary_returns_input_on_failure(settings, monkeypatch):
    image = Image.fromarray(sheet_array(300, 400))

    def broken(*args, **kwargs):
        raise RuntimeError("broken")

    monkeypatch.setattr(image_ops.cv2, "cvtColor", broken)

    assert detect_document_boundary(image, settings) is image
    with pytest.raises(ImageProcessingError):
        image_ops.crop_to_document(image, settings)


def test_wide_image_splits_into_three(settings):
    image = Image.fromarray(sheet_array(900, 400))

    pieces = split_pages(image, settings)

    assert len(pieces) == 3
    assert all(p.height == 400 for p in pieces)
    # inner edges carry a safety margin so slices overlap
    assert sum(p.width for p in pieces) > 900


def test_slice_bounds_cover_width_exactly():
    for width in (900, 901, 1000, 2047):
        bounds = slice_bounds(width, 3)
        assert bounds[0][0] == 0 and bounds[-1][1] == width
        assert sum(right - left for left, right in bounds) == width


def test_landscape_image_splits_into_two(settings):
    image = Image.fromarray(sheet_array(700, 400))

    pieces = split_pages(image, settings)

    assert len(pieces) == 2


def test_aspect_exactly_two_page_ratio_is_not_forced(settings):
    image = Image.new("RGB", (520, 400), (90, 90, 90))

    assert len(split_pages(image, settings)) == 1


def test_portrait_sheet_stays_single(settings):
    image = Image.fromarray(sheet_array(500, 700))

    pieces = split_pages(image, settings)

    assert len(pieces) == 1
    assert pieces[0] is image


def test_brightness_gap_splits_near_centre(settings):
    image = two_pages_with_gap(1200, 1000, 560, 640)

    split_x = find_brightness_gap(image, settings)
    pieces = split_pages(image, settings)

    assert split_x is not None and 560 <= split_x <= 640
    assert len(pieces) == 2
    left, right = pieces
    assert 560 < left.width < 700
    assert 560 < right.width < 700


def test_brightness_gap_near_edge_is_rejected(settings):
    image = two_pages_with_gap(1200, 1000, 100, 180)

    assert find_brightness_gap(image, settings) is None
    assert len(split_pages(image, settings)) == 1


def test_narrow_gap_is_ignored(settings):
    image = two_pages_with_gap(1200, 1000, 590, 610)

    assert find_brightness_gap(image, settings) is None


def test_gap_runs_include_trailing_run():
    profile = np.array([0.1, 0.9, 0.95, 0.2, 0.85, 0.9])

    assert find_gap_runs(profile, 0.8) == [(1, 3, 0.95), (4, 6, 0.9)]


def test_split_vertical_rejects_edge_coordinate():
    image = Image.new("RGB", (100, 50))

    with pytest.raises(ImageProcessingError):
        split_image_vertical(image, 0)


def test_decode_shrinks_to_fit():
    data = to_bytes(sheet_array(4000, 1000))

    image = decode_image(data, (2000, 2800))

    assert image.size == (2000, 500)
    assert image.mode == "RGB"


def test_decode_rejects_garbage():
    with pytest.raises(ImageProcessingError):
        decode_image(b"definitely not an image")


def test_sniff_mime_type():
    arr = sheet_array(60, 60)

    assert sniff_mime_type(to_bytes(arr, "JPEG")) == "image/jpeg"
    assert sniff_mime_type(to_bytes(arr, "PNG")) == "image/png"
    assert sniff_mime_type(b"%PDF-1.4") is None
