"""
Canonical Transaction Model

Every exchange export, whatever its container or column layout, is mapped
into the ``Transaction`` model defined here. The module also holds the
structured results of an ingestion run (``ValidationIssue``, ``ParseResult``)
and the exceptions raised by the row-level parsers.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Custom exceptions
class ParseError(ValueError):
    """Raised when a raw value or row cannot be turned into a transaction field."""

    def __init__(self, message: str, value: Any = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.value = value
        self.field = field


class MissingColumnsError(ParseError):
    """Raised when mandatory columns cannot be located in a dataset."""
    pass


class TransactionTypeError(ParseError):
    """Raised when a transaction type cannot be normalized."""
    pass


class ContainerError(Exception):
    """Raised when a file container (workbook, PDF) yields no usable dataset."""

    def __init__(self, message: str, field: str = 'file'):
        super().__init__(message)
        self.message = message
        self.field = field


class IngestionIOError(RuntimeError):
    """Unrecoverable I/O or memory failure while reading an upload. Not retryable."""

    retryable = False


class TransactionType(str, Enum):
    """Closed set of asset movements understood by the engine."""

    BUY = "buy"
    SELL = "sell"
    TRADE = "trade"
    STAKE = "stake"
    REWARD = "reward"
    AIRDROP = "airdrop"
    MINING = "mining"
    DEFI_YIELD = "defi_yield"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    OTHER = "other"

    @classmethod
    def normalize(cls, value: str) -> 'TransactionType':
        """Normalize a raw type string.

        Raises:
            TransactionTypeError: If the value is not a canonical type or known alias.
        """
        clean_value = str(value).strip().lower().replace(" ", "_").replace("-", "_")

        aliases = {
            "deposit": cls.TRANSFER_IN,
            "withdrawal": cls.TRANSFER_OUT,
            "withdraw": cls.TRANSFER_OUT,
            "staking": cls.STAKE,
            "transferin": cls.TRANSFER_IN,
            "transferout": cls.TRANSFER_OUT,
            "defiyield": cls.DEFI_YIELD,
        }
        if clean_value in aliases:
            return aliases[clean_value]

        try:
            return cls(clean_value)
        except ValueError:
            raise TransactionTypeError(
                f"Unknown transaction type: '{value}'", value=value, field='type'
            ) from None

    @property
    def is_income(self) -> bool:
        return self in INCOME_TYPES


INCOME_TYPES = frozenset({
    TransactionType.STAKE,
    TransactionType.REWARD,
    TransactionType.AIRDROP,
    TransactionType.MINING,
    TransactionType.DEFI_YIELD,
})


class ExchangeType(str, Enum):
    """Schema tag assigned by the format detector."""

    BINANCE_SPOT = "binance_spot"
    BINANCE_DEPOSIT = "binance_deposit"
    BINANCE_WITHDRAWAL = "binance_withdrawal"
    COINBASE = "coinbase"
    KRAKEN = "kraken"
    OTHER = "other"


class Transaction(BaseModel):
    """
    An immutable fact about a single asset movement.

    Amounts, prices and fees are Decimals; ``timestamp`` is always a UTC-aware
    datetime. Hard invariants (positive amount, non-negative price, symbol
    present) are checked by ``parsers.validators.validate_transaction`` so
    that violations come back as row-scoped issues instead of exceptions.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    timestamp: datetime
    type: TransactionType
    symbol: str
    amount: Decimal
    price: Decimal = Decimal(0)
    fee: Decimal = Decimal(0)
    fee_currency: Optional[str] = None
    total_value: Decimal = Decimal(0)
    exchange: ExchangeType = ExchangeType.OTHER
    notes: Optional[str] = None
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator('symbol', 'fee_currency')
    @classmethod
    def normalize_symbol(cls, v):
        if v is None:
            return v
        return v.strip().upper()

    @field_validator('timestamp')
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def composite_key(self) -> tuple:
        """(timestamp, symbol, amount, type) identity used for duplicate checks."""
        return (self.timestamp, self.symbol, self.amount, self.type)

    def exchange_txid(self) -> Optional[str]:
        """Exchange-native transaction id from the raw row, lowercased."""
        for key, value in self.raw_data.items():
            if str(key).strip().lower() in ('txid', 'txhash') and value not in (None, ''):
                return str(value).strip().lower()
        return None


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    """A row-scoped (row >= 1) or file-scoped (row == 0) problem."""

    row: int
    field: str
    value: Any
    message: str
    severity: Severity = Severity.ERROR

    def __str__(self) -> str:
        where = f"Row {self.row}" if self.row else "File"
        return f"{where} [{self.severity.value}] {self.field}: {self.message}"


class ProcessingStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class ParseResult:
    """
    Result of ingesting one file.

    ``errors`` holds error-severity issues; ``warnings`` holds warning and
    info issues. ``valid_rows`` always equals ``len(transactions)``.
    """

    transactions: List[Transaction] = field(default_factory=list)
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    total_rows: int = 0
    duplicates: int = 0

    @property
    def valid_rows(self) -> int:
        return len(self.transactions)

    @property
    def status(self) -> ProcessingStatus:
        if not self.transactions and (self.errors or self.total_rows > 0):
            return ProcessingStatus.FAILED
        if self.errors:
            return ProcessingStatus.PARTIAL
        return ProcessingStatus.COMPLETED

    def add_issue(self, issue: ValidationIssue) -> None:
        if issue.severity == Severity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    @classmethod
    def file_error(cls, message: str, field: str = 'file', value: Any = None) -> 'ParseResult':
        """Zero-transaction result carrying a single file-level error."""
        return cls(errors=[ValidationIssue(row=0, field=field, value=value, message=message)])
