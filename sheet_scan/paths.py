"""Storage layout and scratch directory management."""
import tempfile
import shutil
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class PathError(Exception):
    """Raised when path operations fail."""
    pass


def documents_dir(storage_root: Path) -> Path:
    """
    Get or create the directory holding finished documents.

    Args:
        storage_root: Configured storage root

    Returns:
        Path to <storage_root>/pdfs

    Raises:
        PathError: If directory creation fails
    """
    return _ensure_dir(storage_root / "pdfs")


def scratch_root(storage_root: Path) -> Path:
    """Get or create <storage_root>/tmp for intermediate files."""
    return _ensure_dir(storage_root / "tmp")


def _ensure_dir(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except Exception as e:
        logger.error(f"Error ensuring directory {path}: {e}")
        raise PathError(f"Error ensuring directory {path}: {str(e)}") from e


class TempManager:
    """Manages a per-request scratch directory for intermediate documents."""

    def __init__(self, parent: Path, prefix: str = "scan_"):
        """
        Initialize temp manager.

        Args:
            parent: Directory the scratch directory is created in
            prefix: Prefix for scratch directory name
        """
        self.parent = parent
        self.prefix = prefix
        self._temp_dir: Optional[Path] = None

    @property
    def path(self) -> Optional[Path]:
        """Get the current scratch directory path."""
        return self._temp_dir

    def create(self) -> Path:
        """
        Create a new scratch directory.

        Returns:
            Path to the created directory

        Raises:
            PathError: If directory creation fails
        """
        try:
            self.parent.mkdir(parents=True, exist_ok=True)
            self._temp_dir = Path(tempfile.mkdtemp(prefix=self.prefix, dir=str(self.parent)))
            logger.debug(f"Created scratch directory: {self._temp_dir}")
            return self._temp_dir
        except Exception as e:
            logger.error(f"Failed to create scratch directory: {e}")
            raise PathError(f"Failed to create scratch directory: {str(e)}") from e

    def cleanup(self) -> None:
        """Remove the scratch directory and everything left in it."""
        if self._temp_dir and self._temp_dir.exists():
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            if self._temp_dir.exists():
                logger.warning(f"Could not remove scratch directory: {self._temp_dir}")
            else:
                logger.debug(f"Cleaned up scratch directory: {self._temp_dir}")
        self._temp_dir = None

    def __enter__(self):
        """Context manager entry."""
        self.create()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - cleanup."""
        self.cleanup()
