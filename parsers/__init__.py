"""
Parsers Package - Ingestion Layer

Turns exchange exports (CSV, XLSX, PDF) into validated transactions.

Modules:
- transaction: Transaction model, issues and parse results
- file_parser: File validation and container dispatch
- csv_parser: Dataset parsing with row-scoped errors
- format_detector: Exchange format detection from headers
- row_mappers: Per-exchange and generic row mapping

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = [
    'transaction',
    'file_parser',
    'csv_parser',
    'format_detector',
    'row_mappers',
    'value_parsers',
    'validators',
    'spreadsheet_extractor',
    'pdf_extractor',
]
