"""
Logging Configuration for the Ingestion and Cost-Basis Engine

Every module calls ``setup_logger(__name__)``. Output is one line per record,
with the import run it belongs to appended as key=value pairs:

    [2026-01-15 10:00:00.123] [INFO    ] [file_parser:parse_file:112] Parsing trades.csv | user=u1 file=trades.csv exchange=auto

The level comes from the ``LOG_LEVEL`` environment variable unless given
explicitly. ``LOG_FILE`` adds a file handler next to stdout.
"""

import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

# Rendered in this order; unknown keys follow alphabetically
CONTEXT_KEYS = ('user', 'file', 'exchange', 'year', 'method', 'symbol')


def ingest_context(**fields: Any) -> Dict[str, Any]:
    """
    ``extra`` mapping that tags a record with the run it belongs to:

        logger.info("Parsing", extra=ingest_context(user='u1', file='a.csv'))

    ``None`` values are dropped; enum members are logged by value.
    """
    context = {}
    for key, value in fields.items():
        if value is None:
            continue
        context[key] = getattr(value, 'value', value)
    return {'ingest': context}


def format_context(context: Dict[str, Any]) -> str:
    ordered = [k for k in CONTEXT_KEYS if k in context]
    ordered += sorted(k for k in context if k not in CONTEXT_KEYS)
    return ' '.join(f"{k}={context[k]}" for k in ordered)


class IngestFormatter(logging.Formatter):
    """[TIMESTAMP] [LEVEL] [MODULE:FUNCTION:LINE] MESSAGE | key=value ..."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        location = f"{record.module}:{record.funcName}:{record.lineno}"

        line = f"[{timestamp}] [{record.levelname:8s}] [{location}] {record.getMessage()}"

        context = getattr(record, 'ingest', None)
        if context:
            line += f" | {format_context(context)}"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


class PerformanceLogger:
    """
    Times a block and flags slow ones.

    With ``rows`` set, the closing record also reports throughput.
    """

    def __init__(self, logger: logging.Logger, operation: str, threshold_ms: float = 1000, rows: Optional[int] = None):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.rows = rows
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def _summary(self) -> str:
        text = f"{self.operation} took {self.duration_ms:.1f}ms"
        if self.rows and self.duration_ms:
            text += f" ({self.rows} rows, {self.rows / (self.duration_ms / 1000):.0f} rows/s)"
        return text

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return False

        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.debug(f"{self.operation} aborted after {self.duration_ms:.1f}ms ({exc_type.__name__})")
        elif self.duration_ms > self.threshold_ms:
            self.logger.warning(f"SLOW: {self._summary()}")
        else:
            self.logger.debug(self._summary())

        return False


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Args:
        name: Logger name (usually __name__)
        level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL, then INFO
        log_file: Extra file output; defaults to LOG_FILE when set

    Returns:
        The named logger, configured once per process
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = level or os.getenv('LOG_LEVEL', 'INFO')
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_file or os.getenv('LOG_FILE')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(IngestFormatter())
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_perf_logger(logger: logging.Logger, operation: str, threshold_ms: float = 1000, rows: Optional[int] = None):
    """
    Usage:
        with get_perf_logger(logger, f"map {len(df)} rows", threshold_ms=2000, rows=len(df)):
            ...
    """
    return PerformanceLogger(logger, operation, threshold_ms, rows)


def log_dataframe_info(logger: logging.Logger, df, name: str = "dataset"):
    """
    Log the shape and header of a freshly read export.

    pandas renames repeated headers ("Fee" becomes "Fee.1"); renamed
    columns are reported as a warning.
    """
    if df is None:
        logger.warning(f"{name} is None")
        return

    columns = [str(c) for c in df.columns]
    logger.info(f"{name}: {len(df)} rows x {len(columns)} columns {columns}")

    repeated = [c for c in columns if '.' in c and c.rsplit('.', 1)[0] in columns and c.rsplit('.', 1)[1].isdigit()]
    if repeated:
        logger.warning(f"{name} repeats column names: {repeated}")
