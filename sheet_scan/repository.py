"""Repository for document file operations."""
import os
import re
import shutil
import uuid
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""
    pass


def sanitize_filename(name: str) -> str:
    """Replace characters that are unsafe in file names."""
    return re.sub(r'[^a-zA-Z0-9.\-_]', '_', name)


def generate_document_filename(
    roll_number: str,
    subject_code: str = "",
    timestamp: Optional[datetime] = None,
    compressed: bool = False
) -> str:
    """
    Generate the file name for a student's document.

    Args:
        roll_number: Student roll number
        subject_code: Subject code (omitted from the name when empty)
        timestamp: Generation time (defaults to now)
        compressed: True for the final post-compression artifact

    Returns:
        File name such as Copy_R001_CS101_20240101T120000_1a2b3c4d_compressed.pdf
    """
    timestamp = timestamp or datetime.now()
    parts = ["Copy", sanitize_filename(roll_number)]
    if subject_code:
        parts.append(sanitize_filename(subject_code))
    parts.append(timestamp.strftime("%Y%m%dT%H%M%S"))
    parts.append(uuid.uuid4().hex[:8])
    if compressed:
        parts.append("compressed")
    return "_".join(parts) + ".pdf"


def save_document(path: Path, data: bytes) -> int:
    """
    Write document bytes durably.

    The bytes go to a sibling temp file which is fsynced and then renamed
    over the destination, so path never holds a half-written document.

    Args:
        path: Destination path
        data: Document bytes

    Returns:
        Number of bytes written

    Raises:
        RepositoryError: If save fails
    """
    tmp_path = path.with_name(f".{path.name}.part")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        logger.debug(f"Saved document to {path} ({len(data)} bytes)")
        return len(data)
    except Exception as e:
        remove_file(tmp_path)
        logger.error(f"Error saving document {path}: {e}")
        raise RepositoryError(f"Error saving document: {str(e)}") from e


def copy_file(source: Path, destination: Path) -> bool:
    """
    Copy a file.

    Args:
        source: Source path
        destination: Destination path

    Returns:
        True if successful

    Raises:
        RepositoryError: If copy fails
    """
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        logger.debug(f"Copied {source} to {destination}")
        return True
    except Exception as e:
        logger.error(f"Error copying file: {e}")
        raise RepositoryError(f"Error copying file: {str(e)}") from e


def remove_file(path: Optional[Path]) -> bool:
    """
    Remove a file if it exists.

    Args:
        path: Path to remove (None is ignored)

    Returns:
        True if a file was removed
    """
    if path is None:
        return False
    try:
        if path.exists():
            path.unlink()
            logger.debug(f"Removed {path}")
            return True
        return False
    except Exception as e:
        logger.warning(f"Error removing {path}: {e}")
        return False


def is_written(path: Path) -> bool:
    """True when path is an existing, non-empty regular file."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def file_size(path: Path) -> int:
    """Size of path in bytes, 0 when missing."""
    try:
        return path.stat().st_size
    except OSError:
        return 0
