"""
File Parser - entry point for uploaded exchange exports

``FileParser.parse_file(content, filename, options)`` validates the upload,
picks the container extractor (CSV, Excel, PDF), and returns a
``ParseResult``. Validation failures and unreadable containers come back as
a zero-transaction result with one file-level error. Only unrecoverable
I/O or memory failures raise (``IngestionIOError``).

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass
from pathlib import PurePath
from typing import Dict, List, Optional
from zipfile import BadZipFile

from openpyxl.utils.exceptions import InvalidFileException

from core.settings import EngineSettings, get_settings
from parsers.csv_parser import CSVParser
from parsers.format_detector import resolve_exchange_hint
from parsers.pdf_extractor import extract_pdf_table
from parsers.spreadsheet_extractor import extract_worksheet
from parsers.transaction import (
    ContainerError,
    IngestionIOError,
    ParseResult,
    Severity,
    ValidationIssue,
)
from utils.logging_config import get_perf_logger, ingest_context, setup_logger

logger = setup_logger(__name__)

MB = 1024 * 1024

# extension -> max size in MB
SUPPORTED_FILE_TYPES: Dict[str, int] = {
    '.csv': 10,
    '.xlsx': 25,
    '.xls': 25,
    '.pdf': 50,
}

TEXT_ENCODINGS = ('utf-8-sig', 'cp1252', 'latin-1')


@dataclass
class FileParseOptions:
    user_id: str
    exchange_hint: Optional[str] = None
    sheet_name: Optional[str] = None


def decode_text(content: bytes) -> str:
    for encoding in TEXT_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    # latin-1 maps every byte, so this is not reached
    return content.decode('latin-1', errors='replace')


class FileParser:
    """Parse CSV, Excel and PDF exchange exports into canonical transactions."""

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or get_settings()
        self.csv_parser = CSVParser(self.settings)

    @staticmethod
    def supported_extensions() -> List[str]:
        return list(SUPPORTED_FILE_TYPES)

    def validate_file(self, filename: str, size: int) -> Optional[str]:
        """Return an error message if the upload breaks a type or size rule."""
        extension = PurePath(filename or '').suffix.lower()
        if extension not in SUPPORTED_FILE_TYPES:
            return "Unsupported file type. Supported formats: CSV, XLSX, XLS, PDF"

        limit_mb = SUPPORTED_FILE_TYPES[extension]
        if size > limit_mb * MB:
            return f"File size exceeds {limit_mb}MB limit for {extension[1:].upper()} files"
        return None

    def parse_file(self, content: bytes, filename: str, options: FileParseOptions) -> ParseResult:
        """
        Parse one uploaded file.

        Args:
            content: Raw file bytes
            filename: Original file name; the extension selects the container
            options: Owner, optional exchange hint ("auto" = detect) and sheet name

        Raises:
            IngestionIOError: Unrecoverable I/O or out-of-memory condition
        """
        problem = self.validate_file(filename, len(content))
        if problem:
            logger.warning(f"Rejected upload {filename!r}: {problem}")
            return ParseResult.file_error(problem, value=filename)

        try:
            exchange = resolve_exchange_hint(options.exchange_hint)
        except ValueError as e:
            return ParseResult.file_error(str(e), field='exchange', value=options.exchange_hint)

        extension = PurePath(filename).suffix.lower()
        logger.info(
            f"Parsing {filename} ({len(content)} bytes)",
            extra=ingest_context(user=options.user_id, file=filename, exchange=exchange or 'auto'),
        )

        try:
            with get_perf_logger(logger, f"parse_file {filename}", threshold_ms=5000):
                if extension == '.csv':
                    return self.csv_parser.parse_csv(decode_text(content), options.user_id, exchange)
                if extension in ('.xlsx', '.xls'):
                    return self._parse_excel(content, options, exchange)
                return self._parse_pdf(content, options, exchange)
        except MemoryError as e:
            raise IngestionIOError(f"Out of memory while parsing {filename}") from e
        except OSError as e:
            raise IngestionIOError(f"I/O failure while parsing {filename}: {e}") from e

    def _parse_excel(self, content: bytes, options: FileParseOptions, exchange) -> ParseResult:
        try:
            sheet = extract_worksheet(content, options.sheet_name)
        except ContainerError as e:
            return ParseResult.file_error(e.message, field=e.field)
        except (BadZipFile, InvalidFileException, KeyError, ValueError) as e:
            # Legacy binary .xls and corrupt workbooks end up here
            logger.warning(f"Unreadable workbook: {e}")
            return ParseResult.file_error(f"Failed to parse Excel file: {e}", field='excel')

        result = self.csv_parser.parse_csv(sheet.csv_text, options.user_id, exchange)
        for note in sheet.notes:
            result.add_issue(note)
        return result

    def _parse_pdf(self, content: bytes, options: FileParseOptions, exchange) -> ParseResult:
        try:
            table = extract_pdf_table(content)
        except ContainerError as e:
            return ParseResult.file_error(e.message, field=e.field)

        result = self.csv_parser.parse_csv(table.csv_text, options.user_id, exchange)
        result.add_issue(ValidationIssue(
            row=0,
            field='pdf',
            value=None,
            message=(
                f"Extracted {table.data_rows} rows from PDF. PDF parsing is experimental; "
                "please review the imported transactions."
            ),
            severity=Severity.INFO,
        ))
        return result
