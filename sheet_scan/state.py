"""Data model and scan lifecycle state for students."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pathlib import Path


class AttendanceStatus(str, Enum):
    PENDING = "Pending"
    PRESENT = "Present"
    ABSENT = "Absent"
    MISSING = "Missing"


class ScanStatus(str, Enum):
    NO_SCAN = "NoScan"
    SCANNED = "Scanned"


# Attendance states that forbid holding a scanned document
BLOCKING_STATUSES = (AttendanceStatus.ABSENT, AttendanceStatus.MISSING)


@dataclass
class ProcessedPage:
    """One page image produced by the batch pipeline."""
    position: int
    source_index: int
    split_index: int
    data: bytes
    width: int
    height: int
    degraded: bool = False


@dataclass
class AssembledDocument:
    """Serialized PDF produced by the assembler."""
    data: bytes
    page_count: int
    title: str
    author: str


@dataclass
class DocumentRecord:
    """Reference to a student's current document on disk."""
    path: Path
    generated_at: datetime
    page_count: int
    file_size: int = 0


@dataclass
class ScanResult:
    """Metadata returned to the caller after a successful scan."""
    path: Path
    page_count: int
    file_size: int
    duration_ms: int
    compressed: bool
    degraded_images: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "page_count": self.page_count,
            "file_size": self.file_size,
            "duration_ms": self.duration_ms,
            "compressed": self.compressed,
            "degraded_images": list(self.degraded_images),
        }


@dataclass
class StudentRecord:
    """A student's scan state as held by the roster."""
    roll_number: str
    subject_code: str = ""
    subject_name: str = ""
    status: AttendanceStatus = AttendanceStatus.PENDING
    scan_status: ScanStatus = ScanStatus.NO_SCAN
    document: Optional[DocumentRecord] = None
    scan_time: Optional[datetime] = None
    scanned_pages: int = 0

    @property
    def is_scanned(self) -> bool:
        return self.scan_status == ScanStatus.SCANNED

    def mark_scanned(self, document: DocumentRecord) -> Optional[DocumentRecord]:
        """
        Point the record at a new document.

        Args:
            document: The freshly written document

        Returns:
            The superseded document record, if any
        """
        previous = self.document
        self.document = document
        self.scan_status = ScanStatus.SCANNED
        self.scan_time = document.generated_at
        self.scanned_pages = document.page_count
        if self.status == AttendanceStatus.PENDING:
            self.status = AttendanceStatus.PRESENT
        return previous

    def reset(self) -> Optional[DocumentRecord]:
        """
        Return to the NoScan state.

        Returns:
            The purged document record, if any
        """
        previous = self.document
        self.document = None
        self.scan_status = ScanStatus.NO_SCAN
        self.scan_time = None
        self.scanned_pages = 0
        return previous
