"""
Spreadsheet Extractor

Turns one worksheet of an .xlsx workbook into CSV text so it runs through
the same detection and row mapping as a native CSV export.
"""

import csv
from dataclasses import dataclass, field
from datetime import date, datetime, time
from io import BytesIO, StringIO
from typing import Any, List, Optional

from openpyxl import load_workbook
from openpyxl.cell.rich_text import CellRichText

from parsers.transaction import ContainerError, Severity, ValidationIssue
from utils.logging_config import setup_logger

logger = setup_logger(__name__)


@dataclass
class ExtractedSheet:
    csv_text: str
    sheet_name: str
    notes: List[ValidationIssue] = field(default_factory=list)


def serialize_cell(value: Any) -> str:
    """Rich text -> plain text, dates -> ISO-8601, everything else -> str()."""
    if value is None:
        return ''
    if isinstance(value, CellRichText):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.isoformat() + 'Z'
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def rows_to_csv(rows: List[List[str]]) -> str:
    """Join serialized rows; values containing , " or newlines are quoted."""
    buffer = StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
    writer.writerows(rows)
    return buffer.getvalue()


def extract_worksheet(content: bytes, sheet_name: Optional[str] = None) -> ExtractedSheet:
    """
    Serialize one worksheet of a workbook to CSV text.

    A requested sheet that does not exist falls back to the first sheet with
    an info note.

    Raises:
        ContainerError: No worksheets, or the chosen worksheet has no rows.
    """
    workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    try:
        names = list(workbook.sheetnames)
        if not names:
            raise ContainerError("No worksheets found in Excel file", field='excel')

        notes: List[ValidationIssue] = []
        chosen = names[0]
        if sheet_name:
            if sheet_name in names:
                chosen = sheet_name
            else:
                notes.append(ValidationIssue(
                    row=0,
                    field='excel',
                    value=sheet_name,
                    message=f'Worksheet "{sheet_name}" not found, using "{chosen}" instead',
                    severity=Severity.INFO,
                ))

        if len(names) > 1:
            others = ', '.join(n for n in names if n != chosen)
            notes.append(ValidationIssue(
                row=0,
                field='excel',
                value=chosen,
                message=f'Workbook has {len(names)} worksheets; parsed "{chosen}". Other sheets: {others}',
                severity=Severity.INFO,
            ))

        worksheet = workbook[chosen]
        rows: List[List[str]] = []
        for values in worksheet.iter_rows(values_only=True):
            cells = [serialize_cell(v) for v in values]
            if any(cell.strip() for cell in cells):
                rows.append(cells)
    finally:
        workbook.close()

    if not rows:
        raise ContainerError(f'Worksheet "{chosen}" is empty', field='excel')

    # read-only sheets report their full dimension; drop trailing empty columns
    width = max(
        max((i + 1 for i, cell in enumerate(row) if cell.strip()), default=0)
        for row in rows
    )
    rows = [row[:width] + [''] * (width - len(row)) for row in rows]

    logger.info(f'Extracted {len(rows) - 1} data rows from worksheet "{chosen}"')
    return ExtractedSheet(csv_text=rows_to_csv(rows), sheet_name=chosen, notes=notes)
