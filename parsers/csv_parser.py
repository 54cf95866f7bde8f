"""CSV dataset parser: detects the exchange schema and maps every row to a Transaction."""

import csv
from datetime import datetime, timezone
from io import StringIO
from typing import Dict, List, Optional, Tuple

import pandas as pd

from core.settings import EngineSettings, get_settings
from parsers.format_detector import detect_exchange_format
from parsers.row_mappers import ROW_MAPPERS, GenericColumnMap, RawRow, map_generic, resolve_generic_columns
from parsers.transaction import (
    ExchangeType,
    ParseError,
    ParseResult,
    Severity,
    ValidationIssue,
)
from parsers.validators import has_errors, validate_transaction
from utils.logging_config import get_perf_logger, log_dataframe_info, setup_logger

logger = setup_logger(__name__)


class CSVParser:
    """
    Parse comma/semicolon/tab separated exchange exports.

    Each data row is mapped independently; a bad row becomes one or more
    issues in the result and never stops the rest of the file.
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or get_settings()

    def detect_delimiter(self, content: str) -> str:
        """Detect the delimiter from the header line; exchange exports default to comma."""
        first_line = content.split('\n')[0] if content else ''

        if first_line.count(';') > first_line.count(','):
            return ';'
        if first_line.count('\t') > first_line.count(','):
            return '\t'
        if ',' in first_line:
            return ','

        sniffer = csv.Sniffer()
        try:
            sample = '\n'.join(content.split('\n')[:5])
            return sniffer.sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            return ','

    def read_rows(self, content: str, delimiter: str) -> Tuple[pd.DataFrame, List[List[str]]]:
        """Load the dataset as strings only; return it with the malformed lines pandas skipped."""
        bad_lines: List[List[str]] = []

        def on_bad_line(fields: List[str]):
            bad_lines.append(fields)
            return None

        df = pd.read_csv(
            StringIO(content),
            sep=delimiter,
            quotechar='"',
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
            engine='python',
            on_bad_lines=on_bad_line,
        )
        df.columns = [str(c).strip().strip('"').lstrip('\ufeff') for c in df.columns]
        return df, bad_lines

    @staticmethod
    def number_records(content: str, delimiter: str, width: int) -> Tuple[List[int], List[int]]:
        """
        Data-row numbers of well-formed and malformed records, in file order.

        Numbering starts at 1 after the header and counts malformed records,
        so a rejected line does not shift the rows after it. Blank lines are
        not counted.
        """
        good: List[int] = []
        bad: List[int] = []
        records = csv.reader(StringIO(content), delimiter=delimiter, quotechar='"', skipinitialspace=True)
        next(records, None)
        number = 0
        for fields in records:
            if not fields or (len(fields) == 1 and not fields[0].strip()):
                continue
            number += 1
            (bad if len(fields) > width else good).append(number)
        return good, bad

    @staticmethod
    def _row_to_dict(row: pd.Series) -> RawRow:
        return {
            str(key): ('' if value is None or (not isinstance(value, str) and pd.isna(value)) else str(value))
            for key, value in row.items()
        }

    def parse_csv(
        self,
        content: str,
        user_id: str,
        exchange: Optional[ExchangeType] = None
    ) -> ParseResult:
        """
        Parse CSV text into a ParseResult.

        Args:
            content: Decoded CSV text with a header row
            user_id: Owner of the parsed transactions
            exchange: Force a schema instead of auto-detecting it

        Returns:
            ParseResult with row-numbered issues (data rows start at 1)
        """
        result = ParseResult()
        delimiter = self.detect_delimiter(content)

        try:
            df, bad_lines = self.read_rows(content, delimiter)
        except pd.errors.EmptyDataError:
            return ParseResult.file_error("File is empty")
        except (pd.errors.ParserError, csv.Error) as e:
            logger.warning(f"Unreadable CSV: {e}")
            return ParseResult.file_error(f"Could not read CSV data: {e}")

        log_dataframe_info(logger, df, name="CSV dataset")

        headers = list(df.columns)
        schema = exchange or detect_exchange_format(headers)
        mapper = ROW_MAPPERS[schema]
        generic_columns: Optional[GenericColumnMap] = None
        if schema == ExchangeType.OTHER:
            generic_columns = resolve_generic_columns(headers)
            missing = generic_columns.missing_mandatory()
            if missing:
                logger.warning(f"Generic mapping lacks mandatory columns: {missing}")

        logger.info(f"Parsing {len(df)} rows as {schema.value} (delimiter '{delimiter}')")

        try:
            row_numbers, bad_numbers = self.number_records(content, delimiter, len(headers))
        except csv.Error:
            row_numbers, bad_numbers = [], []
        if len(row_numbers) != len(df) or len(bad_numbers) != len(bad_lines):
            logger.debug("Record scan disagrees with the parsed dataset; numbering rows sequentially")
            row_numbers = list(range(1, len(df) + 1))
            bad_numbers = [0] * len(bad_lines)

        result.total_rows = len(df) + len(bad_lines)
        for row_number, fields in zip(bad_numbers, bad_lines):
            result.add_issue(ValidationIssue(
                row=row_number,
                field='line',
                value=delimiter.join(fields),
                message=f"Malformed line: expected {len(headers)} fields, got {len(fields)}",
            ))

        if result.total_rows == 0:
            result.add_issue(ValidationIssue(row=0, field='file', value=None, message="No data rows found in file"))
            return result

        now = datetime.now(timezone.utc)
        seen_keys: Dict[tuple, int] = {}

        with get_perf_logger(logger, f"map {schema.value} rows", threshold_ms=2000, rows=len(df)):
            for row_number, (_, series) in zip(row_numbers, df.iterrows()):
                row = self._row_to_dict(series)

                try:
                    if schema == ExchangeType.OTHER:
                        transaction = map_generic(row, user_id, self.settings, columns=generic_columns)
                    else:
                        transaction = mapper(row, user_id, self.settings)
                except ParseError as e:
                    result.add_issue(ValidationIssue(
                        row=row_number,
                        field=e.field or 'row',
                        value=e.value,
                        message=e.message,
                    ))
                    logger.debug(f"Row {row_number} rejected: {e.message}")
                    continue
                except (ValueError, ArithmeticError) as e:
                    result.add_issue(ValidationIssue(
                        row=row_number, field='row', value=None, message=str(e),
                    ))
                    logger.debug(f"Row {row_number} rejected: {e}")
                    continue

                issues = validate_transaction(transaction, row_number, now=now)
                for issue in issues:
                    result.add_issue(issue)
                if has_errors(issues):
                    continue

                key = transaction.composite_key()
                if key in seen_keys:
                    result.duplicates += 1
                    result.add_issue(ValidationIssue(
                        row=row_number,
                        field='row',
                        value=None,
                        message=f"Same timestamp, symbol, amount and type as row {seen_keys[key]}",
                        severity=Severity.WARNING,
                    ))
                else:
                    seen_keys[key] = row_number

                result.transactions.append(transaction)

        logger.info(
            f"Parsed {result.valid_rows}/{result.total_rows} rows: "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings, "
            f"{result.duplicates} in-file duplicates"
        )
        if len(result.errors) > 10:
            logger.warning(f"First 10 errors: {[str(e) for e in result.errors[:10]]}")

        return result
