"""Pure image processing operations for photographed answer sheets."""
import cv2
import numpy as np
from PIL import Image, ImageOps, ImageEnhance, ImageFilter
from io import BytesIO
from typing import List, Optional, Tuple
import logging

from .config import ScanSettings

logger = logging.getLogger(__name__)

# JPEG quality for intermediate re-encodes between stages
HIGH_QUALITY = 95
ANALYSIS_HEIGHT = 200


class ImageProcessingError(Exception):
    """Raised when image processing operations fail."""
    pass


def decode_image(data: bytes, max_size: Optional[Tuple[int, int]] = None) -> Image.Image:
    """
    Decode a raw upload into an upright RGB image.

    Applies the EXIF orientation and, when max_size is given, shrinks the
    image to fit inside it (never enlarges).

    Args:
        data: Raw image bytes (JPEG/PNG/WebP)
        max_size: Optional (width, height) bounding box

    Returns:
        PIL Image in RGB mode

    Raises:
        ImageProcessingError: If the buffer cannot be decoded
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            image = ImageOps.exif_transpose(img).convert("RGB")
    except Exception as e:
        raise ImageProcessingError(f"Failed to decode image: {str(e)}") from e

    if max_size is not None:
        image = resize_to_fit(image, max_size)
    return image


def resize_to_fit(image: Image.Image, max_size: Tuple[int, int]) -> Image.Image:
    """
    Shrink image to fit inside max_size, preserving aspect ratio.

    Args:
        image: PIL Image object
        max_size: (width, height) bounding box

    Returns:
        PIL Image (resized if needed, original otherwise)
    """
    width, height = image.size
    max_w, max_h = max_size
    scale = min(max_w / float(width), max_h / float(height), 1.0)
    if scale >= 1.0:
        return image

    new_width = max(1, int(width * scale))
    new_height = max(1, int(height * scale))
    logger.debug(f"Resized image from {width}x{height} to {new_width}x{new_height}")
    return image.resize((new_width, new_height), Image.LANCZOS)


def encode_jpeg(image: Image.Image, quality: int = HIGH_QUALITY) -> bytes:
    """Encode a PIL image as JPEG bytes."""
    buf = BytesIO()
    image.convert("RGB").save(buf, 'JPEG', quality=quality, optimize=True)
    return buf.getvalue()


def encode_png(data: bytes) -> bytes:
    """
    Re-encode an arbitrary image buffer as PNG.

    Raises:
        ImageProcessingError: If the buffer cannot be decoded
    """
    try:
        with Image.open(BytesIO(data)) as img:
            buf = BytesIO()
            img.convert("RGB").save(buf, 'PNG')
            return buf.getvalue()
    except Exception as e:
        raise ImageProcessingError(f"PNG re-encode failed: {str(e)}") from e


def reencode(image: Image.Image, quality: int = HIGH_QUALITY) -> Image.Image:
    """Round-trip image through JPEG so each stage hands over an encoded result."""
    with Image.open(BytesIO(encode_jpeg(image, quality))) as img:
        img.load()
        return img.convert("RGB")


def sniff_mime_type(data: bytes) -> Optional[str]:
    """
    Identify the MIME type of an image buffer from its content.

    Args:
        data: Raw image bytes

    Returns:
        MIME type string such as 'image/jpeg', or None if not an image
    """
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
    except Exception:
        return None
    if not fmt:
        return None
    return Image.MIME.get(fmt.upper())


def inspect_image(image: Image.Image, min_side: int = 500) -> List[str]:
    """
    Return advisory quality issues for a captured image.

    Args:
        image: PIL Image object
        min_side: Minimum acceptable width and height in pixels

    Returns:
        List of human-readable issues (empty when the image looks usable)
    """
    issues = []
    width, height = image.size
    if width < min_side or height < min_side:
        issues.append(f"Image too small - minimum {min_side}x{min_side} pixels required")
    return issues


def make_thumbnail(image: Image.Image, size: Tuple[int, int] = (300, 400), quality: int = 70) -> bytes:
    """Create a JPEG thumbnail that fits inside size."""
    thumb = image.convert("RGB")
    thumb.thumbnail(size, Image.LANCZOS)
    return encode_jpeg(thumb, quality)


def crop_to_document(image: Image.Image, settings: ScanSettings) -> Image.Image:
    """
    Crop a photographed page down to the document region.

    The image is converted to grayscale and contrast-normalized, then sampled
    on a coarse grid. Samples darker than the edge threshold count as
    document content and the tight bounding box of those samples is taken.
    When that box covers less than the minimum coverage of the width or the
    height, detection is treated as unreliable and the full frame is kept.
    The result is always re-encoded at high quality.

    Args:
        image: PIL Image object
        settings: Scan settings (edge threshold, coverage, margins)

    Returns:
        Cropped image, or the full frame when detection is unreliable

    Raises:
        ImageProcessingError: If detection fails
    """
    try:
        width, height = image.size
        gray = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)

        stride = max(2, width // 100)
        samples = gray[::stride, ::stride]
        ys, xs = np.nonzero(samples < settings.edge_threshold)
        if xs.size == 0:
            logger.debug("Boundary detection: no document samples found")
            return reencode(image)

        left = int(xs.min()) * stride
        right = min(width, int(xs.max()) * stride + 1)
        top = int(ys.min()) * stride
        bottom = min(height, int(ys.max()) * stride + 1)

        box_w = right - left
        box_h = bottom - top
        if box_w < settings.min_coverage_ratio * width or box_h < settings.min_coverage_ratio * height:
            logger.debug(
                f"Boundary detection unreliable: box {box_w}x{box_h} in {width}x{height}"
            )
            return reencode(image)

        margin_x = min(int(width * settings.crop_margin_ratio), settings.crop_margin_max)
        margin_y = min(int(height * settings.crop_margin_ratio), settings.crop_margin_max)
        left = max(0, left - margin_x)
        top = max(0, top - margin_y)
        right = min(width, right + margin_x)
        bottom = min(height, bottom + margin_y)

        cropped = image.crop((left, top, right, bottom))
        return reencode(cropped)

    except Exception as e:
        raise ImageProcessingError(f"Boundary detection failed: {str(e)}") from e


def detect_document_boundary(image: Image.Image, settings: ScanSettings) -> Image.Image:
    """Like crop_to_document, but returns the input unchanged instead of raising."""
    try:
        return crop_to_document(image, settings)
    except ImageProcessingError as e:
        logger.warning(f"{e}; keeping original")
        return image


def apply_enhancement(image: Image.Image) -> Image.Image:
    """
    Normalize contrast and sharpen a cropped page.

    Args:
        image: PIL Image object

    Returns:
        Enhanced image

    Raises:
        ImageProcessingError: If enhancement fails
    """
    try:
        enhanced = ImageOps.autocontrast(image.convert("RGB"), cutoff=1)
        enhanced = ImageEnhance.Contrast(enhanced).enhance(1.1)
        # Conservative parameters keep halos off thin pen strokes
        enhanced = enhanced.filter(ImageFilter.UnsharpMask(radius=1.0, percent=60, threshold=3))
        return enhanced
    except Exception as e:
        raise ImageProcessingError(f"Enhancement failed: {str(e)}") from e


def enhance_image(image: Image.Image) -> Image.Image:
    """Never raises; on any failure the input image is returned unchanged."""
    try:
        return apply_enhancement(image)
    except ImageProcessingError as e:
        logger.warning(f"{e}; keeping input")
        return image


def slice_bounds(width: int, count: int) -> List[Tuple[int, int]]:
    """
    Compute pre-margin (left, right) column bounds of count equal slices.

    The slices are contiguous and together cover exactly [0, width).
    """
    edges = [int(round(i * width / float(count))) for i in range(count + 1)]
    return [(edges[i], edges[i + 1]) for i in range(count)]


def split_image_even(image: Image.Image, count: int, margin_ratio: float) -> List[Image.Image]:
    """
    Split image into count vertical slices of equal width.

    Each inner edge is widened by a safety margin so content on the seam is
    kept on both sides; neighbouring slices may overlap slightly.

    Args:
        image: PIL Image object
        count: Number of slices
        margin_ratio: Margin as a fraction of slice width

    Returns:
        List of slice images, left to right
    """
    width, height = image.size
    margin = max(1, int(width / float(count) * margin_ratio))
    slices = []
    for i, (left, right) in enumerate(slice_bounds(width, count)):
        if i > 0:
            left = max(0, left - margin)
        if i < count - 1:
            right = min(width, right + margin)
        slices.append(image.crop((left, 0, right, height)))
    return slices


def split_image_vertical(image: Image.Image, split_x: int, margin: int = 0) -> Tuple[Image.Image, Image.Image]:
    """
    Split image vertically at specified x coordinate.

    Args:
        image: PIL Image object
        split_x: X coordinate to split at
        margin: Pixels each half extends past the split line

    Returns:
        Tuple of (left_image, right_image)

    Raises:
        ImageProcessingError: If the split line leaves an empty half
    """
    width, height = image.size
    if not 0 < split_x < width:
        raise ImageProcessingError(f"Split coordinate {split_x} outside image width {width}")

    left_image = image.crop((0, 0, min(width, split_x + margin), height))
    right_image = image.crop((max(0, split_x - margin), 0, width, height))

    return left_image, right_image


def column_brightness_profile(gray: np.ndarray, brightness: int) -> np.ndarray:
    """
    Fraction of bright pixels per column, sampled in the 20%-80% vertical band.

    Args:
        gray: Grayscale analysis image
        brightness: Pixel value above which a pixel counts as bright

    Returns:
        1-D float array, one entry per column
    """
    height = gray.shape[0]
    y1 = int(height * 0.2)
    y2 = max(y1 + 1, int(height * 0.8))
    band = gray[y1:y2, :]
    return (band > brightness).mean(axis=0)


def find_gap_runs(profile: np.ndarray, fill_ratio: float) -> List[Tuple[int, int, float]]:
    """
    Find contiguous runs of columns whose bright fraction exceeds fill_ratio.

    Returns:
        List of (start, end, peak) with end exclusive
    """
    runs = []
    start = None
    for x, value in enumerate(profile):
        if value > fill_ratio:
            if start is None:
                start = x
        elif start is not None:
            runs.append((start, x, float(profile[start:x].max())))
            start = None
    if start is not None:
        runs.append((start, len(profile), float(profile[start:].max())))
    return runs


def find_brightness_gap(image: Image.Image, settings: ScanSettings) -> Optional[int]:
    """
    Locate the bright vertical seam between two pages photographed side by side.

    The image is downsampled to a fixed analysis height. Runs of columns that
    are almost entirely bright are seam candidates; runs touching either
    image edge are page margins or background, not seams. The widest run
    wins, ties broken by peak brightness, and the result is rejected unless
    it falls within 30%-70% of the image width.

    Args:
        image: PIL Image object
        settings: Scan settings (gap brightness, fill ratio, min width)

    Returns:
        Split x coordinate in full-resolution pixels, or None
    """
    width, height = image.size
    scale = ANALYSIS_HEIGHT / float(height)
    analysis_w = max(1, int(round(width * scale)))

    gray = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
    small = cv2.resize(gray, (analysis_w, ANALYSIS_HEIGHT), interpolation=cv2.INTER_AREA)

    profile = column_brightness_profile(small, settings.gap_brightness)
    min_run = settings.gap_min_width_ratio * analysis_w
    candidates = [
        (start, end, peak) for start, end, peak in find_gap_runs(profile, settings.gap_fill_ratio)
        if end - start >= min_run and start > 0 and end < analysis_w
    ]
    if not candidates:
        return None

    start, end, peak = max(candidates, key=lambda r: (r[1] - r[0], r[2]))
    split_x = int(round((start + end) / 2.0 / scale))
    position = split_x / float(width)
    if not 0.3 <= position <= 0.7:
        logger.debug(f"Gap at {position:.2f} of width rejected (outside 0.30-0.70)")
        return None

    logger.debug(f"Brightness gap found at x={split_x} (run {end - start}px, peak {peak:.2f})")
    return split_x


def split_pages(image: Image.Image, settings: ScanSettings) -> List[Image.Image]:
    """
    Split a photograph holding several sheets side by side into single pages.

    Wide images are cut by aspect ratio alone (three slices above the
    three-page ratio, two above the two-page ratio). Otherwise a bright
    vertical seam is searched for; when found the image is cut there.

    Args:
        image: PIL Image object
        settings: Scan settings

    Returns:
        List of page images, left to right (length >= 1)

    Raises:
        ImageProcessingError: If extraction fails
    """
    try:
        width, height = image.size
        aspect = width / float(height)

        if aspect > settings.three_page_aspect:
            logger.debug(f"Aspect {aspect:.2f}: splitting into 3")
            return split_image_even(image, 3, settings.split_margin_ratio)
        if aspect > settings.two_page_aspect:
            logger.debug(f"Aspect {aspect:.2f}: splitting into 2")
            return split_image_even(image, 2, settings.split_margin_ratio)

        split_x = find_brightness_gap(image, settings)
        if split_x is None:
            return [image]

        margin = max(1, int(split_x * settings.split_margin_ratio))
        left, right = split_image_vertical(image, split_x, margin)
        return [left, right]

    except ImageProcessingError:
        raise
    except Exception as e:
        logger.error(f"Error during page split: {e}")
        raise ImageProcessingError(f"Error during page split: {str(e)}") from e
