"""Best-effort PDF size reduction through Ghostscript."""
import subprocess
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .config import ScanSettings
from .repository import copy_file, remove_file, is_written, file_size

logger = logging.getLogger(__name__)


@dataclass
class CompressionResult:
    """Outcome of a compression attempt; path always holds a valid document."""
    compressed: bool
    path: Path
    reason: str = ""


def build_command(settings: ScanSettings, input_path: Path, output_path: Path) -> List[str]:
    """Assemble the Ghostscript pdfwrite command line."""
    return [
        settings.gs_binary,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS={settings.pdf_settings}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


def _run_ghostscript(settings: ScanSettings, input_path: Path, output_path: Path) -> str:
    """
    Run Ghostscript once.

    Returns:
        Empty string on success, otherwise the failure reason
    """
    cmd = build_command(settings, input_path, output_path)
    try:
        proc = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            timeout=settings.compress_timeout,
        )
    except FileNotFoundError:
        return f"{settings.gs_binary} not found on PATH"
    except subprocess.TimeoutExpired:
        return f"timed out after {settings.compress_timeout}s"
    except OSError as e:
        return f"could not start {settings.gs_binary}: {e}"

    if proc.returncode != 0:
        stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
        return f"exit code {proc.returncode}: {stderr[:200]}"
    if not is_written(output_path):
        return "no output produced"
    return ""


def compress_document(input_path: Path, output_path: Path, settings: ScanSettings) -> CompressionResult:
    """
    Shrink a PDF, falling back to a verbatim copy.

    Tool failure is never raised: when Ghostscript is missing, times out,
    exits non-zero or does not make the file smaller, the input is copied to
    output_path unchanged. The caller deletes input_path afterwards.

    Args:
        input_path: Uncompressed PDF
        output_path: Destination for the final document
        settings: Scan settings (binary, timeout, PDF preset)

    Returns:
        CompressionResult describing what was written

    Raises:
        RepositoryError: If even the fallback copy fails
    """
    reason = _run_ghostscript(settings, input_path, output_path)
    if not reason:
        before = file_size(input_path)
        after = file_size(output_path)
        if after < before:
            logger.info(f"Compressed {input_path.name}: {before} -> {after} bytes")
            return CompressionResult(compressed=True, path=output_path)
        reason = f"output not smaller ({after} >= {before} bytes)"

    logger.warning(f"Compression skipped for {input_path.name}: {reason}; copying original")
    remove_file(output_path)
    copy_file(input_path, output_path)
    return CompressionResult(compressed=False, path=output_path, reason=reason)
