"""
Hashing Module - SHA256 Audit Seal

Canonical JSON serialization and SHA256 hashing. Each TaxCalculation is
sealed with a hash of its inputs and results so that a stored report can be
checked against a recomputation.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import hashlib
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def canonical_json_dumps(obj: Any) -> str:
    """
    Serialize object to a deterministic JSON string.

    Keys are sorted, whitespace is removed, Decimals are written as strings
    (no float rounding) and dates/datetimes as ISO-8601.

    Example:
        >>> canonical_json_dumps({"amount": Decimal("123.45"), "day": date(2024, 1, 15)})
        '{"amount":"123.45","day":"2024-01-15"}'
    """
    def default_handler(o):
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        if is_dataclass(o) and not isinstance(o, type):
            return asdict(o)
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        default=default_handler,
        ensure_ascii=True
    )


def calculate_sha256(data: Any) -> str:
    """
    Calculate SHA256 hash of data.

    Returns:
        Hex digest prefixed with 'sha256:'
    """
    json_str = canonical_json_dumps(data)
    return f"sha256:{hashlib.sha256(json_str.encode('utf-8')).hexdigest()}"


def verify_hash(data: Any, expected_hash: str) -> bool:
    """True if ``data`` hashes to ``expected_hash``."""
    return calculate_sha256(data) == expected_hash
