"""Concurrent per-image processing: boundary detection, enhancement, splitting."""
import time
import logging
import concurrent.futures
from dataclasses import dataclass
from typing import List, Optional, Sequence

from PIL import Image

from .config import ScanSettings
from .image_ops import (
    decode_image, crop_to_document, apply_enhancement, split_pages,
    encode_jpeg, inspect_image, ImageProcessingError
)
from .state import ProcessedPage

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Raised when a batch produces no pages at all."""
    pass


@dataclass
class _ImageOutcome:
    """Pages produced from one input image, before global numbering."""
    pages: List[ProcessedPage]
    degraded: bool


class BatchImagePipeline:
    """Runs detect -> enhance -> split for every image of a batch on a bounded pool."""

    def __init__(self, settings: ScanSettings):
        """
        Initialize the pipeline.

        Args:
            settings: Scan settings (worker count, thresholds, quality)
        """
        self.settings = settings

    def process(self, images: Sequence[bytes]) -> List[ProcessedPage]:
        """
        Process a batch of raw images into ordered pages.

        Every image runs independently on the worker pool. Output follows
        input order and, inside an image that was split, left-to-right
        order. The first image is the cover sheet and is never split.

        Args:
            images: Raw image buffers, cover sheet first

        Returns:
            Ordered list of ProcessedPage

        Raises:
            PipelineError: If no page could be produced
        """
        total = len(images)
        if total == 0:
            raise PipelineError("No images to process")

        start = time.monotonic()
        # One slot per input image, each written by exactly one task
        outcomes: List[Optional[_ImageOutcome]] = [None] * total

        workers = min(self.settings.max_workers, total)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {
                ex.submit(self.process_image, index, data): index
                for index, data in enumerate(images)
            }
            concurrent.futures.wait(futures)
            for future, index in futures.items():
                try:
                    outcomes[index] = future.result()
                except Exception as e:
                    logger.error(f"Image {index}: pipeline crashed, using raw input: {e}")
                    outcomes[index] = self._raw_outcome(index, images[index])

        pages = []
        for outcome in outcomes:
            if outcome is None:
                continue
            for page in outcome.pages:
                page.position = len(pages)
                pages.append(page)

        if not pages:
            raise PipelineError("Batch produced no pages")

        degraded = [i for i, o in enumerate(outcomes) if o is not None and o.degraded]
        elapsed = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Processed {total} images into {len(pages)} pages in {elapsed}ms "
            f"with {workers} workers"
        )
        if degraded:
            logger.warning(f"Images degraded to fallback output: {degraded}")
        return pages

    def process_image(self, index: int, data: bytes) -> _ImageOutcome:
        """
        Run the stage chain for one image.

        Each stage failure falls back to the last good intermediate.

        Args:
            index: Position of the image in the batch
            data: Raw image bytes

        Returns:
            _ImageOutcome with this image's pages
        """
        settings = self.settings
        try:
            image = decode_image(data, (settings.max_image_width, settings.max_image_height))
        except ImageProcessingError as e:
            logger.warning(f"Image {index}: decode failed, passing raw bytes through: {e}")
            return self._raw_outcome(index, data)

        for issue in inspect_image(image):
            logger.debug(f"Image {index}: {issue}")

        degraded = False
        current = image

        try:
            current = crop_to_document(current, settings)
        except Exception as e:
            logger.warning(f"Image {index}: {e}")
            degraded = True

        try:
            current = apply_enhancement(current)
        except Exception as e:
            logger.warning(f"Image {index}: {e}")
            degraded = True

        pieces = [current]
        if index > 0:
            try:
                pieces = split_pages(current, settings)
            except ImageProcessingError as e:
                logger.warning(f"Image {index}: split failed, keeping page whole: {e}")
                degraded = True

        pages = [
            self._to_page(index, split_index, piece, degraded)
            for split_index, piece in enumerate(pieces)
        ]
        if len(pages) > 1:
            logger.debug(f"Image {index}: split into {len(pages)} pages")
        return _ImageOutcome(pages=pages, degraded=degraded)

    def _to_page(self, index: int, split_index: int, image: Image.Image, degraded: bool) -> ProcessedPage:
        width, height = image.size
        return ProcessedPage(
            position=-1,
            source_index=index,
            split_index=split_index,
            data=encode_jpeg(image, self.settings.image_quality),
            width=width,
            height=height,
            degraded=degraded,
        )

    @staticmethod
    def _raw_outcome(index: int, data: bytes) -> _ImageOutcome:
        page = ProcessedPage(
            position=-1, source_index=index, split_index=0,
            data=data, width=0, height=0, degraded=True
        )
        return _ImageOutcome(pages=[page], degraded=True)
