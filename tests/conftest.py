from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from sheet_scan.config import ScanSettings


def sheet_array(width: int, height: int) -> np.ndarray:
    """White sheet with a dark frame and evenly spaced dark text bars."""
    arr = np.full((height, width, 3), 255, dtype=np.uint8)
    frame = max(4, (width // 100) * 2 + 2)
    arr[:frame, :] = 0
    arr[-frame:, :] = 0
    arr[:, :frame] = 0
    arr[:, -frame:] = 0
    bar = max(2, height // 25)
    x1, x2 = int(width * 0.08), int(width * 0.92)
    for y in range(height // 10, height - height // 10, height // 10):
        arr[y:y + bar, x1:x2] = 30
    return arr


def to_bytes(arr: np.ndarray, fmt: str = "JPEG") -> bytes:
    buf = BytesIO()
    Image.fromarray(arr).save(buf, fmt)
    return buf.getvalue()


@pytest.fixture
def make_sheet():
    def _make(width: int, height: int, fmt: str = "JPEG") -> bytes:
        return to_bytes(sheet_array(width, height), fmt)
    return _make


@pytest.fixture
def settings(tmp_path):
    return ScanSettings(
        storage_root=str(tmp_path / "storage"),
        gs_binary="sheet-scan-missing-gs",
        max_workers=3,
    )
