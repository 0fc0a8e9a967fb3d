"""PDF assembly from processed page images."""
import logging
from io import BytesIO
from pathlib import Path
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from PIL import Image

from .image_ops import encode_png, make_thumbnail
from .state import AssembledDocument, ProcessedPage

logger = logging.getLogger(__name__)

# A4 portrait in PDF points
PAGE_WIDTH = 595
PAGE_HEIGHT = 842
CREATOR = "SheetScan"

JPEG_MAGIC = b'\xff\xd8\xff'


class AssemblyError(Exception):
    """Raised when a document cannot be assembled."""
    pass


class EmbedStrategy(NamedTuple):
    """A codec attempt: prepare() turns page bytes into an embeddable stream."""
    name: str
    prepare: Callable[[bytes], bytes]


def _prepare_jpeg(data: bytes) -> bytes:
    if not data.startswith(JPEG_MAGIC):
        raise AssemblyError("Buffer is not a JPEG stream")
    return data


def _prepare_png(data: bytes) -> bytes:
    return encode_png(data)


# Tried in order; the first that embeds wins
EMBED_STRATEGIES: Tuple[EmbedStrategy, ...] = (
    EmbedStrategy("jpeg", _prepare_jpeg),
    EmbedStrategy("png", _prepare_png),
)


def _image_size(stream: bytes) -> Tuple[int, int]:
    with Image.open(BytesIO(stream)) as img:
        return img.size


def fit_rect(
    image_width: float,
    image_height: float,
    margin: float,
    page_width: float = PAGE_WIDTH,
    page_height: float = PAGE_HEIGHT
) -> fitz.Rect:
    """
    Compute the centred placement of an image on a page.

    The image keeps its aspect ratio and is shrunk (never enlarged) to fit
    inside the page minus margin on every side.

    Returns:
        fitz.Rect in page coordinates
    """
    max_width = page_width - 2 * margin
    max_height = page_height - 2 * margin

    width = float(image_width)
    height = float(image_height)
    if width > max_width:
        ratio = max_width / width
        width = max_width
        height = height * ratio
    if height > max_height:
        ratio = max_height / height
        height = max_height
        width = width * ratio

    x = (page_width - width) / 2.0
    y = (page_height - height) / 2.0
    return fitz.Rect(x, y, x + width, y + height)


def embed_page(
    doc: fitz.Document,
    page: ProcessedPage,
    margin: float,
    strategies: Sequence[EmbedStrategy] = EMBED_STRATEGIES
) -> str:
    """
    Add one page to doc, trying each codec strategy in order.

    Args:
        doc: Open PyMuPDF document
        page: Page image to embed
        margin: Page margin in points
        strategies: Ordered codec strategies

    Returns:
        Name of the strategy that succeeded

    Raises:
        AssemblyError: If every strategy fails
    """
    errors = []
    for strategy in strategies:
        pdf_page = None
        try:
            stream = strategy.prepare(page.data)
            width, height = _image_size(stream)
            pdf_page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            pdf_page.insert_image(fit_rect(width, height, margin), stream=stream)
            return strategy.name
        except Exception as e:
            if pdf_page is not None:
                doc.delete_page(pdf_page.number)
            errors.append(f"{strategy.name}: {e}")
            logger.warning(f"Page {page.position + 1}: {strategy.name} embed failed: {e}")

    raise AssemblyError(
        f"Could not embed page {page.position + 1} (image {page.source_index}): "
        + "; ".join(errors)
    )


def assemble_document(
    pages: Sequence[ProcessedPage],
    title: str,
    author: str,
    subject: str = "",
    margin: float = 10.0
) -> AssembledDocument:
    """
    Lay out every page image on an A4 page and serialize the PDF.

    Args:
        pages: Ordered page images
        title: Document title metadata
        author: Document author metadata
        subject: Optional subject metadata
        margin: Page margin in points

    Returns:
        AssembledDocument with the serialized bytes

    Raises:
        AssemblyError: If there are no pages or a page cannot be embedded
    """
    if not pages:
        raise AssemblyError("No pages to assemble")

    doc = fitz.open()
    try:
        for page in pages:
            strategy = embed_page(doc, page, margin)
            logger.debug(f"Page {page.position + 1} added via {strategy}")

        doc.set_metadata({
            "title": title,
            "author": author,
            "subject": subject,
            "creator": CREATOR,
            "producer": CREATOR,
        })
        data = doc.tobytes(garbage=3, deflate=True)
        page_count = doc.page_count
    except AssemblyError:
        raise
    except Exception as e:
        logger.error(f"PDF assembly failed: {e}")
        raise AssemblyError(f"PDF assembly failed: {str(e)}") from e
    finally:
        doc.close()

    logger.info(f"Assembled {page_count} pages ({len(data)} bytes)")
    return AssembledDocument(data=data, page_count=page_count, title=title, author=author)


def read_document_info(path: Path) -> dict:
    """
    Describe a stored document.

    Args:
        path: Path to PDF

    Returns:
        Dictionary with exists, file_size and page_count
    """
    info = {"path": str(path), "exists": False, "file_size": 0, "page_count": 0}
    if not path.is_file():
        return info

    info["exists"] = True
    info["file_size"] = path.stat().st_size
    try:
        with fitz.open(str(path)) as doc:
            info["page_count"] = doc.page_count
    except Exception as e:
        logger.warning(f"Could not read page count of {path}: {e}")
    return info


def render_thumbnail(path: Path, size: Tuple[int, int] = (300, 400), page_number: int = 0) -> Optional[bytes]:
    """
    Render a page of a stored document as a JPEG thumbnail.

    Args:
        path: Path to PDF
        size: Bounding box of the thumbnail
        page_number: 0-based page to render

    Returns:
        JPEG bytes, or None if the document cannot be rendered
    """
    try:
        with fitz.open(str(path)) as doc:
            if page_number >= doc.page_count:
                return None
            pix = doc[page_number].get_pixmap(matrix=fitz.Matrix(1.0, 1.0))
            png = pix.tobytes("png")
        with Image.open(BytesIO(png)) as img:
            return make_thumbnail(img, size)
    except Exception as e:
        logger.warning(f"Thumbnail render failed for {path}: {e}")
        return None

