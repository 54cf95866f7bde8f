"""
Tax Lot and Disposal Data Models

- TaxLot: one acquisition (buy or transfer in) still partly or fully held
- DisposalRecord: one lot slice consumed by a sell or transfer out
- TaxCalculation: the per-year summary handed to report rendering

Copyright (c) 2026 Andre. All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class AccountingMethod(str, Enum):
    """Lot matching conventions supported by the tax engine."""
    FIFO = "FIFO"
    AVERAGE_COST = "AVERAGE_COST"


class TaxType(str, Enum):
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


@dataclass
class CalculationWarning:
    """Data-quality problem found while replaying transactions."""
    symbol: str
    transaction_id: Optional[str]
    message: str


@dataclass
class TaxLot:
    """
    A single acquisition. ``unit_cost`` is fixed at acquisition time; only
    ``amount`` shrinks as disposals consume the lot. ``cost_known`` is False
    for lots acquired without a price (e.g. an unpriced deposit).
    """
    lot_id: str
    symbol: str
    acquired_at: datetime
    amount: Decimal
    unit_cost: Decimal
    transaction_id: Optional[str] = None
    cost_known: bool = True

    def is_exhausted(self) -> bool:
        return self.amount <= 0


@dataclass
class DisposalRecord:
    """
    One lot slice consumed by a disposal.

    ``gain_loss`` is None when the disposal price or the lot cost is
    unknown; such records are listed but left out of the gain sums.
    """
    transaction_id: str
    symbol: str
    type: str
    date: datetime
    acquired_at: datetime
    amount: Decimal
    cost_basis: Decimal
    sale_price: Decimal
    proceeds: Optional[Decimal]
    gain_loss: Optional[Decimal]
    holding_period_days: int
    tax_type: TaxType
    lot_id: Optional[str] = None


@dataclass
class TaxCalculation:
    user_id: str
    tax_year: int
    method: AccountingMethod
    short_term_gains: Decimal = field(default_factory=lambda: Decimal(0))
    long_term_gains: Decimal = field(default_factory=lambda: Decimal(0))
    total_gains: Decimal = field(default_factory=lambda: Decimal(0))
    total_tax_liability: Decimal = field(default_factory=lambda: Decimal(0))
    transactions: List[DisposalRecord] = field(default_factory=list)
    warnings: List[CalculationWarning] = field(default_factory=list)
    created_at: Optional[datetime] = None
    calculation_hash: Optional[str] = None

    def hashable_content(self) -> dict:
        """Inputs and results covered by ``calculation_hash``."""
        return {
            'user_id': self.user_id,
            'tax_year': self.tax_year,
            'method': self.method,
            'short_term_gains': self.short_term_gains,
            'long_term_gains': self.long_term_gains,
            'total_gains': self.total_gains,
            'total_tax_liability': self.total_tax_liability,
            'transactions': self.transactions,
        }
