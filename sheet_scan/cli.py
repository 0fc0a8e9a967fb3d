"""Command-line interface for SheetScan."""
import argparse
import json
import sys
import logging
from pathlib import Path
from typing import List, Optional

from .assembler import read_document_info, render_thumbnail
from .config import ScanSettings, ConfigError, load_settings
from .services import ScanService, ScanError
from .state import StudentRecord

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def run_scan(
    roll_number: str,
    image_paths: List[Path],
    settings: ScanSettings,
    subject_code: str = "",
    subject_name: str = ""
) -> int:
    """
    Scan a batch of image files into a document for one student.

    Args:
        roll_number: Student roll number
        image_paths: Image files, cover sheet first
        settings: Scan settings
        subject_code: Optional subject code
        subject_name: Optional subject name

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    images = []
    for path in image_paths:
        if not path.is_file():
            logger.error(f"Image file does not exist: {path}")
            return 1
        images.append(path.read_bytes())

    student = StudentRecord(roll_number=roll_number, subject_code=subject_code, subject_name=subject_name)
    service = ScanService(settings)
    try:
        result = service.scan(student, images)
    except ScanError as e:
        logger.error(f"Scan failed: {e}")
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def run_info(pdf_path: Path) -> int:
    """Print document info for a PDF."""
    info = read_document_info(pdf_path)
    print(json.dumps(info, indent=2))
    return 0 if info["exists"] else 1


def run_thumbnail(pdf_path: Path, output: Path) -> int:
    """Write a JPEG thumbnail of the first page of a PDF."""
    data = render_thumbnail(pdf_path)
    if data is None:
        logger.error(f"Could not render thumbnail for {pdf_path}")
        return 1
    output.write_bytes(data)
    logger.info(f"Thumbnail written to {output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SheetScan - Turn photographed answer sheets into one PDF per student",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan three photos for roll number R001 (cover sheet first)
  python -m sheet_scan.cli scan --roll R001 cover.jpg p1.jpg p2.jpg

  # Show page count and size of a stored document
  python -m sheet_scan.cli info /path/to/Copy_R001.pdf

  # Render a preview thumbnail
  python -m sheet_scan.cli thumbnail /path/to/Copy_R001.pdf -o preview.jpg
        """
    )

    parser.add_argument(
        '--storage-root',
        type=str,
        default=None,
        help='Directory for generated documents (overrides configuration)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    sub = parser.add_subparsers(dest='command', required=True)

    scan = sub.add_parser('scan', help='Build a document from image files')
    scan.add_argument('--roll', required=True, help='Student roll number')
    scan.add_argument('--subject-code', default='', help='Subject code')
    scan.add_argument('--subject-name', default='', help='Subject name')
    scan.add_argument('images', nargs='+', help='Image files, cover sheet first')

    info = sub.add_parser('info', help='Show document info')
    info.add_argument('pdf', help='Path to a generated PDF')

    thumb = sub.add_parser('thumbnail', help='Render first-page thumbnail')
    thumb.add_argument('pdf', help='Path to a generated PDF')
    thumb.add_argument('--output', '-o', default='thumbnail.jpg', help='Output JPEG path')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    if args.command == 'info':
        return run_info(Path(args.pdf))
    if args.command == 'thumbnail':
        return run_thumbnail(Path(args.pdf), Path(args.output))

    try:
        settings = load_settings()
        if args.storage_root:
            settings.storage_root = str(Path(args.storage_root).resolve())
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    return run_scan(
        args.roll,
        [Path(p) for p in args.images],
        settings,
        subject_code=args.subject_code,
        subject_name=args.subject_name,
    )


if __name__ == '__main__':
    sys.exit(main())
