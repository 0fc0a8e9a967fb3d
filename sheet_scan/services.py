"""Service layer orchestrating a student's scan from raw photos to stored PDF."""
import time
import logging
import threading
from dataclasses import fields, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .assembler import assemble_document, read_document_info, render_thumbnail, AssemblyError
from .compressor import compress_document
from .config import ScanSettings
from .image_ops import sniff_mime_type
from .paths import TempManager, documents_dir, scratch_root, PathError
from .pipeline import BatchImagePipeline, PipelineError
from .repository import (
    generate_document_filename, save_document, remove_file, is_written,
    file_size, RepositoryError
)
from .state import (
    AttendanceStatus, DocumentRecord, ScanResult, StudentRecord, BLOCKING_STATUSES
)

logger = logging.getLogger(__name__)


class ScanError(Exception):
    """A scan request failed; the student's previous document is untouched."""
    pass


class ScanValidationError(ScanError):
    """The scan request was rejected before any processing."""
    pass


class ScanCancelledError(ScanError):
    """The caller aborted the scan before the new document was committed."""
    pass


class ScanService:
    """Service for scanning students' answer sheets into documents."""

    def __init__(self, settings: ScanSettings, pipeline: Optional[BatchImagePipeline] = None):
        """
        Initialize scan service.

        Args:
            settings: Scan settings
            pipeline: Batch image pipeline (built from settings if omitted)
        """
        self.settings = settings
        self.pipeline = pipeline or BatchImagePipeline(settings)

    def validate_request(self, student: StudentRecord, images: Sequence[bytes]) -> None:
        """
        Check a scan request before processing.

        Args:
            student: Target student
            images: Raw image buffers

        Raises:
            ScanValidationError: If the request cannot be processed
        """
        if not images:
            raise ScanValidationError("No images uploaded")

        limit = self.settings.max_images_per_request
        if len(images) > limit:
            raise ScanValidationError(f"Too many images. Maximum {limit} allowed.")

        if student.status in BLOCKING_STATUSES:
            raise ScanValidationError(
                f"Cannot scan copies for students marked {student.status.value}"
            )

        for i, data in enumerate(images):
            mime = sniff_mime_type(data)
            if mime not in self.settings.allowed_mime_types:
                raise ScanValidationError(
                    f"Image {i + 1}: invalid file type ({mime or 'unknown'})"
                )

    def scan(
        self,
        student: StudentRecord,
        images: Sequence[bytes],
        cancel_event: Optional[threading.Event] = None,
        on_commit: Optional[Callable[[StudentRecord], None]] = None
    ) -> ScanResult:
        """
        Turn a batch of photographed pages into the student's current document.

        The previous document file is removed only after the new one is on
        disk and the record points at it. On any failure the record is left
        as it was and every new file is deleted.

        Args:
            student: Target student (updated in place on success)
            images: Raw image buffers, cover sheet first
            cancel_event: When set, the scan aborts before committing
            on_commit: Persists the updated record; if it raises, the
                record is restored and the new document deleted

        Returns:
            ScanResult with page count, size, duration and path

        Raises:
            ScanValidationError: If the request is invalid
            ScanCancelledError: If cancel_event was set
            ScanError: If processing or writing failed
        """
        start = time.monotonic()
        self.validate_request(student, images)
        logger.info(f"Processing {len(images)} images for {student.roll_number}")

        generated_at = datetime.now()
        final_path = None
        try:
            docs_dir = documents_dir(self.settings.storage_path)
            tmp_parent = scratch_root(self.settings.storage_path)
            final_path = docs_dir / generate_document_filename(
                student.roll_number, student.subject_code, generated_at, compressed=True
            )

            with TempManager(tmp_parent) as tmp:
                pages = self.pipeline.process(images)
                self._check_cancelled(cancel_event)

                document = assemble_document(
                    pages,
                    title=f"Exam Copy - {student.roll_number}",
                    author=self.settings.document_author,
                    subject=self._subject_line(student),
                    margin=self.settings.page_margin,
                )
                self._check_cancelled(cancel_event)

                raw_path = tmp.path / generate_document_filename(
                    student.roll_number, student.subject_code, generated_at
                )
                save_document(raw_path, document.data)
                compression = compress_document(raw_path, final_path, self.settings)

                if not is_written(final_path):
                    raise RepositoryError(f"Document was not written: {final_path}")
                remove_file(raw_path)
                self._check_cancelled(cancel_event)

        except ScanCancelledError:
            remove_file(final_path)
            logger.warning(f"Scan for {student.roll_number} cancelled; nothing committed")
            raise
        except (PipelineError, AssemblyError, RepositoryError, PathError) as e:
            remove_file(final_path)
            logger.error(f"Scan for {student.roll_number} failed: {e}")
            raise ScanError(f"Failed to process scanned images: {str(e)}") from e
        except Exception as e:
            remove_file(final_path)
            logger.error(f"Unexpected error scanning {student.roll_number}: {e}", exc_info=True)
            raise ScanError(f"Failed to process scanned images: {str(e)}") from e

        record = DocumentRecord(
            path=final_path,
            generated_at=generated_at,
            page_count=document.page_count,
            file_size=file_size(final_path),
        )
        self._commit(student, record, on_commit)

        degraded = sorted({p.source_index for p in pages if p.degraded})
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Scanned {student.roll_number}: {record.page_count} pages, "
            f"{record.file_size} bytes in {duration_ms}ms"
        )
        return ScanResult(
            path=final_path,
            page_count=record.page_count,
            file_size=record.file_size,
            duration_ms=duration_ms,
            compressed=compression.compressed,
            degraded_images=degraded,
        )

    def _commit(
        self,
        student: StudentRecord,
        record: DocumentRecord,
        on_commit: Optional[Callable[[StudentRecord], None]]
    ) -> None:
        snapshot = replace(student)
        previous = student.mark_scanned(record)
        if on_commit is not None:
            try:
                on_commit(student)
            except Exception as e:
                for f in fields(student):
                    setattr(student, f.name, getattr(snapshot, f.name))
                remove_file(record.path)
                logger.error(f"Could not persist scan for {student.roll_number}: {e}")
                raise ScanError(f"Failed to save scan record: {str(e)}") from e

        if previous is not None and previous.path != record.path:
            if remove_file(Path(previous.path)):
                logger.info(f"Deleted superseded document {previous.path}")

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError("Scan cancelled by caller")

    @staticmethod
    def _subject_line(student: StudentRecord) -> str:
        if student.subject_name and student.subject_code:
            return f"{student.subject_name} - {student.subject_code}"
        return student.subject_name or student.subject_code

    def rescan(self, student: StudentRecord) -> StudentRecord:
        """
        Reset a student so they can be scanned again.

        Args:
            student: Target student

        Returns:
            The updated student record
        """
        self._purge(student)
        logger.info(f"Student {student.roll_number} reset for rescanning")
        return student

    def delete_scans(self, student: StudentRecord) -> StudentRecord:
        """Delete a student's document and scan state."""
        self._purge(student)
        logger.info(f"Scans deleted for {student.roll_number}")
        return student

    def batch_delete_scans(self, students: Iterable[StudentRecord]) -> int:
        """
        Delete scans for several students.

        Returns:
            Number of students that held a document
        """
        count = 0
        for student in students:
            if self._purge(student):
                count += 1
        logger.info(f"Batch delete removed {count} documents")
        return count

    def set_status(self, student: StudentRecord, status: Union[AttendanceStatus, str]) -> StudentRecord:
        """
        Change a student's attendance status.

        Absent and Missing students cannot hold a document, so moving into
        either status purges any existing scan.

        Args:
            student: Target student
            status: New attendance status

        Returns:
            The updated student record

        Raises:
            ScanValidationError: If status is not a known value
        """
        try:
            status = AttendanceStatus(status)
        except ValueError as e:
            raise ScanValidationError(f"Unknown status: {status}") from e

        student.status = status
        if status in BLOCKING_STATUSES and self._purge(student):
            logger.info(f"Purged document for {student.roll_number} (marked {status.value})")
        return student

    def _purge(self, student: StudentRecord) -> bool:
        previous = student.reset()
        if previous is None:
            return False
        remove_file(Path(previous.path))
        return True

    def document_info(self, student: StudentRecord) -> Optional[dict]:
        """
        Describe the student's current document.

        A reference whose file has disappeared is cleared from the record.

        Returns:
            Info dictionary, or None if the student has no document
        """
        if not student.is_scanned or student.document is None:
            return None

        info = read_document_info(Path(student.document.path))
        if not info["exists"]:
            logger.warning(f"Document for {student.roll_number} missing on disk; clearing reference")
            student.reset()
            return info

        info["generated_at"] = student.document.generated_at.isoformat()
        info["filename"] = self.download_name(student)
        return info

    def thumbnail(self, student: StudentRecord) -> Optional[bytes]:
        """Render the first page of the student's document as a JPEG thumbnail."""
        if not student.is_scanned or student.document is None:
            return None
        return render_thumbnail(Path(student.document.path))

    @staticmethod
    def download_name(student: StudentRecord) -> str:
        """File name offered when the document is downloaded."""
        parts: List[str] = ["Copy", student.roll_number]
        if student.subject_code:
            parts.append(student.subject_code)
        return "_".join(parts) + ".pdf"
