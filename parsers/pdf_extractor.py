"""
PDF Extractor (best effort)

Runs poppler's ``pdftotext -layout`` over the upload and looks for a
transaction table in the text: one header line naming date, amount and
asset columns, plus data lines that carry a date and a decimal number or
have four or more comma-separated cells. Layout text separates columns
with runs of spaces; lines that already contain commas are passed through
as delimited. A table without a recognizable header uses its first data
line as one.
"""

import csv
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from io import StringIO
from typing import List, Optional

from parsers.transaction import ContainerError
from utils.logging_config import setup_logger

logger = setup_logger(__name__)

PDFTOTEXT_TIMEOUT_SECONDS = 60

HEADER_DATE = re.compile(r'\b(date|time)', re.IGNORECASE)
HEADER_AMOUNT = re.compile(r'\b(amount|quantity)', re.IGNORECASE)
HEADER_ASSET = re.compile(r'\b(symbol|asset|coin)', re.IGNORECASE)

DATA_DATE = re.compile(r'(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4})')
DATA_DECIMAL = re.compile(r'\$?\d+\.\d+')
DELIMITED_ROW = re.compile(r'^.+,.+,.+,.+$')
COLUMN_GAP = re.compile(r'\s{2,}|\t+')


@dataclass
class ExtractedTable:
    csv_text: str
    data_rows: int


def pdf_to_text(content: bytes) -> str:
    """
    Extract layout-preserving text with the ``pdftotext`` CLI.

    Raises:
        ContainerError: pdftotext missing, failing or timing out.
    """
    exe = shutil.which("pdftotext")
    if not exe:
        raise ContainerError("PDF text extraction requires the 'pdftotext' tool (poppler-utils)", field='pdf')

    fd, path = tempfile.mkstemp(suffix=".pdf")
    try:
        with os.fdopen(fd, 'wb') as handle:
            handle.write(content)
        completed = subprocess.run(
            [exe, "-layout", path, "-"],
            capture_output=True,
            timeout=PDFTOTEXT_TIMEOUT_SECONDS,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise ContainerError("PDF text extraction timed out", field='pdf') from None
    finally:
        os.unlink(path)

    if completed.returncode != 0:
        detail = completed.stderr.decode('utf-8', errors='replace').strip()
        logger.warning(f"pdftotext failed ({completed.returncode}): {detail}")
        raise ContainerError(f"Could not read PDF file: {detail or 'pdftotext failed'}", field='pdf')

    return completed.stdout.decode('utf-8', errors='replace')


def is_header_line(line: str) -> bool:
    return bool(HEADER_DATE.search(line) and HEADER_AMOUNT.search(line) and HEADER_ASSET.search(line))


def is_data_line(line: str) -> bool:
    """A dated line with a decimal figure, or any line with four or more comma-separated cells."""
    if DATA_DATE.search(line) and DATA_DECIMAL.search(line):
        return True
    return bool(DELIMITED_ROW.match(line))


def split_line(line: str) -> List[str]:
    """Column cells of one text line."""
    stripped = line.strip()
    if ',' in stripped:
        return next(csv.reader([stripped], skipinitialspace=True))
    return [part.strip() for part in COLUMN_GAP.split(stripped) if part.strip()]


def extract_table_from_text(text: str) -> Optional[ExtractedTable]:
    """
    Locate the header and data lines of a transaction table.

    Data lines are only collected after a recognized header line. Without
    one, the first data-shaped line is taken as the header and the lines
    after it as rows. Returns ``None`` when that leaves no data rows.
    """
    header: Optional[List[str]] = None
    rows: List[List[str]] = []
    headerless: List[List[str]] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if header is None and is_header_line(line):
            header = split_line(line)
            continue
        if is_data_line(line):
            (rows if header is not None else headerless).append(split_line(line))

    if header is None and len(headerless) > 1:
        logger.info("No table header found in PDF text; using the first data line as header")
        header, rows = headerless[0], headerless[1:]

    if header is None or not rows:
        return None

    buffer = StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
    writer.writerow(header)
    writer.writerows(rows)
    return ExtractedTable(csv_text=buffer.getvalue(), data_rows=len(rows))


def extract_pdf_table(content: bytes) -> ExtractedTable:
    """
    Raises:
        ContainerError: No text in the PDF, or no recognizable table.
    """
    text = pdf_to_text(content)
    if not text.strip():
        raise ContainerError("No text content found in PDF file", field='pdf')

    table = extract_table_from_text(text)
    if table is None:
        raise ContainerError(
            "Could not extract transaction data from PDF. No transaction table found; "
            "please export the data as CSV or Excel instead.",
            field='pdf',
        )

    logger.info(f"Extracted {table.data_rows} table rows from PDF text")
    return table
