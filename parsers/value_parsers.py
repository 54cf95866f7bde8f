"""
Value Parsers - dates and numbers from exchange exports

Exchange exports disagree on date layouts and decorate numbers with
currency glyphs and thousands separators. Both parsers raise ``ParseError``
carrying the offending text; callers turn that into a row-level issue.

Money is parsed into ``Decimal`` only. Binary floats never touch an amount.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import pandas as pd

from parsers.transaction import ParseError


# Binance exports use two-digit years: "24-01-15 10:00:00"
SHORT_YEAR_PATTERN = re.compile(r'^(\d{2})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})$')

ISO_PATTERN = re.compile(
    r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:?\d{2})?$'
)

# Tried in order after the two regex forms
STRICT_FORMATS = [
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d',
]

SLASH_FORMATS = [
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%Y %H:%M',
    '%m/%d/%Y',
    '%d/%m/%Y %H:%M:%S',
    '%d/%m/%Y',
    '%Y/%m/%d %H:%M:%S',
    '%Y/%m/%d',
]

NUMBER_NOISE = re.compile(r'[,$€£¥\s]')


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_iso(text: str) -> datetime:
    normalized = text
    if normalized.endswith('Z'):
        normalized = normalized[:-1] + '+00:00'

    # fromisoformat only takes 3 or 6 fractional digits before 3.11
    match = re.match(r'^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$', normalized)
    if match:
        head, fraction, tail = match.groups()
        normalized = f"{head}.{fraction[:6].ljust(6, '0')}{tail}"

    # "+0100" -> "+01:00"
    normalized = re.sub(r'([+-]\d{2})(\d{2})$', r'\1:\2', normalized)
    return datetime.fromisoformat(normalized)


def parse_date(text: str) -> datetime:
    """
    Parse an export timestamp into a UTC-aware datetime.

    Recognized, in priority order: ``YY-MM-DD HH:MM:SS`` (year + 2000),
    ISO-8601 with optional fraction and zone, ``YYYY-MM-DD HH:MM:SS``,
    ``YYYY-MM-DD``, slash formats, then a generic pandas parse.

    Raises:
        ParseError: If no form matches.
    """
    if text is None:
        raise ParseError("Invalid date format: None", value=text)

    value = str(text).strip()
    if not value:
        raise ParseError("Invalid date format: empty value", value=text)

    match = SHORT_YEAR_PATTERN.match(value)
    if match:
        year, month, day, hour, minute, second = (int(part) for part in match.groups())
        try:
            return datetime(2000 + year, month, day, hour, minute, second, tzinfo=timezone.utc)
        except ValueError:
            raise ParseError(f"Invalid date format: {value}", value=text) from None

    if ISO_PATTERN.match(value):
        try:
            return _to_utc(_parse_iso(value))
        except ValueError:
            raise ParseError(f"Invalid date format: {value}", value=text) from None

    for fmt in STRICT_FORMATS + SLASH_FORMATS:
        try:
            return _to_utc(datetime.strptime(value, fmt))
        except ValueError:
            continue

    # Last resort: "2024-01-15 10:00:00 UTC", "2021-01-01 12:00:00.1234", "Jan 5, 2024"
    try:
        parsed = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError, OverflowError):
        raise ParseError(f"Invalid date format: {value}", value=text) from None

    if pd.isna(parsed):
        raise ParseError(f"Invalid date format: {value}", value=text)
    return parsed.to_pydatetime()


def parse_number(text) -> Decimal:
    """
    Parse a money or quantity field into a Decimal.

    Strips thousands separators and the glyphs $ € £ ¥. Anything else left
    over (letters, NaN, Infinity) is rejected.

    Raises:
        ParseError: On non-numeric residue.
    """
    if isinstance(text, Decimal):
        if not text.is_finite():
            raise ParseError(f"Invalid number format: {text}", value=text)
        return text
    if isinstance(text, int) and not isinstance(text, bool):
        return Decimal(text)

    raw = '' if text is None else str(text)
    cleaned = NUMBER_NOISE.sub('', raw)

    try:
        result = Decimal(cleaned)
    except InvalidOperation:
        raise ParseError(f"Invalid number format: {raw}", value=text) from None

    if not result.is_finite():
        raise ParseError(f"Invalid number format: {raw}", value=text)
    return result


def parse_optional_number(text, default: Decimal = Decimal(0)) -> Decimal:
    """Like ``parse_number`` but blank cells yield ``default``."""
    if text is None or str(text).strip() == '':
        return default
    return parse_number(text)


def parse_optional_text(text) -> Optional[str]:
    if text is None:
        return None
    value = str(text).strip()
    return value or None
