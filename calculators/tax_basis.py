"""
Tax Lot Engine - lot-based cost tracking for realized gains

Independent of the weighted-average holdings view in ``calculators.portfolio``:
1. Acquisitions (buy, transfer_in) open lots
2. Disposals (sell, transfer_out) consume lots through a matching strategy
3. Each consumed slice becomes a DisposalRecord classified short/long term

The two views are allowed to report different realized gains.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from core.hashing import calculate_sha256
from core.settings import EngineSettings, get_settings
from calculators.tax_events import (
    AccountingMethod,
    CalculationWarning,
    DisposalRecord,
    TaxCalculation,
    TaxLot,
    TaxType,
)
from parsers.transaction import Transaction, TransactionType
from utils.logging_config import get_perf_logger, ingest_context, setup_logger

logger = setup_logger(__name__)

ZERO = Decimal(0)

ACQUISITION_TYPES = (TransactionType.BUY, TransactionType.TRANSFER_IN)
DISPOSAL_TYPES = (TransactionType.SELL, TransactionType.TRANSFER_OUT)


@dataclass(frozen=True)
class TaxRates:
    short_term: Decimal = Decimal("0.37")
    long_term: Decimal = Decimal("0.20")
    long_term_threshold_days: int = 365

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> 'TaxRates':
        return cls(
            short_term=settings.short_term_tax_rate,
            long_term=settings.long_term_tax_rate,
            long_term_threshold_days=settings.long_term_threshold_days,
        )


class LotMatchingStrategy(ABC):
    """Decides which open lots a disposal consumes."""

    @abstractmethod
    def add_lot(self, lot: TaxLot, open_lots: List[TaxLot]) -> None:
        pass

    @abstractmethod
    def take(self, open_lots: List[TaxLot], amount: Decimal) -> List[Tuple[TaxLot, Decimal]]:
        """Consume up to ``amount`` from ``open_lots``; return (lot, sliced amount) pairs."""
        pass

    @abstractmethod
    def get_method_name(self) -> AccountingMethod:
        pass


class FIFOStrategy(LotMatchingStrategy):
    """First-In, First-Out: oldest lot first, splitting the last one as needed."""

    def add_lot(self, lot: TaxLot, open_lots: List[TaxLot]) -> None:
        open_lots.append(lot)

    def take(self, open_lots: List[TaxLot], amount: Decimal) -> List[Tuple[TaxLot, Decimal]]:
        slices = []
        remaining = amount
        # Lots arrive in timestamp order, so list order is acquisition order
        for lot in open_lots:
            if remaining <= 0:
                break
            if lot.is_exhausted():
                continue
            qty = min(lot.amount, remaining)
            lot.amount -= qty
            remaining -= qty
            slices.append((lot, qty))

        open_lots[:] = [lot for lot in open_lots if not lot.is_exhausted()]
        return slices

    def get_method_name(self) -> AccountingMethod:
        return AccountingMethod.FIFO


class AverageCostStrategy(LotMatchingStrategy):
    """
    All lots of a symbol are pooled into one lot at the weighted average
    unit cost. The pooled lot keeps the earliest acquisition date, and its
    cost stays unknown once an unpriced lot has been mixed in.
    """

    def add_lot(self, lot: TaxLot, open_lots: List[TaxLot]) -> None:
        if not open_lots:
            open_lots.append(lot)
            return

        pool = open_lots[0]
        total_amount = pool.amount + lot.amount
        if total_amount > 0:
            pool.unit_cost = (pool.amount * pool.unit_cost + lot.amount * lot.unit_cost) / total_amount
        pool.amount = total_amount
        pool.acquired_at = min(pool.acquired_at, lot.acquired_at)
        pool.cost_known = pool.cost_known and lot.cost_known

    def take(self, open_lots: List[TaxLot], amount: Decimal) -> List[Tuple[TaxLot, Decimal]]:
        if not open_lots or open_lots[0].is_exhausted():
            return []
        pool = open_lots[0]
        qty = min(pool.amount, amount)
        pool.amount -= qty
        if pool.is_exhausted():
            open_lots.clear()
        return [(pool, qty)]

    def get_method_name(self) -> AccountingMethod:
        return AccountingMethod.AVERAGE_COST


STRATEGIES = {
    AccountingMethod.FIFO: FIFOStrategy,
    AccountingMethod.AVERAGE_COST: AverageCostStrategy,
}


def get_strategy(method) -> LotMatchingStrategy:
    """
    Raises:
        ValueError: For methods without an implementation (LIFO, specific ID).
    """
    try:
        key = AccountingMethod(str(method.value if isinstance(method, AccountingMethod) else method).upper())
    except ValueError:
        supported = ', '.join(m.value for m in STRATEGIES)
        raise ValueError(f"Accounting method '{method}' is not supported. Supported: {supported}") from None
    return STRATEGIES[key]()


class TaxLotEngine:
    """
    Chronological lot replay over one user's transactions.

    Lot state lives in the engine instance; build a new engine per run.
    """

    def __init__(
        self,
        transactions: List[Transaction],
        method=AccountingMethod.FIFO,
        rates: Optional[TaxRates] = None,
    ):
        self.transactions = sorted(transactions, key=lambda t: t.timestamp)
        self.strategy = get_strategy(method)
        self.rates = rates or TaxRates.from_settings(get_settings())
        self.open_lots: Dict[str, List[TaxLot]] = defaultdict(list)
        self.disposals: List[DisposalRecord] = []
        self.warnings: List[CalculationWarning] = []

    def process_all_transactions(self) -> List[DisposalRecord]:
        with get_perf_logger(logger, "lot replay", rows=len(self.transactions)):
            for t in self.transactions:
                if t.type in ACQUISITION_TYPES:
                    self._open_lot(t)
                elif t.type in DISPOSAL_TYPES:
                    self._dispose(t)
        logger.info(f"Lot replay produced {len(self.disposals)} disposal records")
        return self.disposals

    def _warn(self, t: Transaction, message: str):
        logger.warning(f"{t.symbol}: {message} (transaction {t.id})")
        self.warnings.append(CalculationWarning(symbol=t.symbol, transaction_id=t.id, message=message))

    def _open_lot(self, t: Transaction):
        if t.amount <= 0:
            return
        lot = TaxLot(
            lot_id=f"lot_{t.id}",
            symbol=t.symbol,
            acquired_at=t.timestamp,
            amount=t.amount,
            unit_cost=t.price,
            transaction_id=t.id,
            cost_known=t.price > 0,
        )
        self.strategy.add_lot(lot, self.open_lots[t.symbol])

    def _dispose(self, t: Transaction):
        if t.amount <= 0:
            return

        slices = self.strategy.take(self.open_lots[t.symbol], t.amount)
        matched = sum((qty for _, qty in slices), ZERO)
        if matched < t.amount:
            self._warn(t, f"disposal of {t.amount} on {t.timestamp.date()} matched only {matched} against open lots")

        price_known = t.price > 0
        if slices and not price_known:
            self._warn(t, f"{t.type.value} on {t.timestamp.date()} has no known price; lots consumed without a gain")

        unknown_cost = sum((qty for lot, qty in slices if not lot.cost_known), ZERO)
        if unknown_cost > 0:
            self._warn(
                t,
                f"{unknown_cost} of {t.amount} disposed on {t.timestamp.date()} came from lots "
                f"without a known cost; no gain computed for that part"
            )

        for lot, qty in slices:
            holding_days = (t.timestamp - lot.acquired_at).days
            cost_basis = qty * lot.unit_cost
            proceeds = qty * t.price if price_known else None
            gain_loss = (proceeds - cost_basis) if proceeds is not None and lot.cost_known else None
            self.disposals.append(DisposalRecord(
                transaction_id=t.id,
                symbol=t.symbol,
                type=t.type.value,
                date=t.timestamp,
                acquired_at=lot.acquired_at,
                amount=qty,
                cost_basis=cost_basis,
                sale_price=t.price,
                proceeds=proceeds,
                gain_loss=gain_loss,
                holding_period_days=holding_days,
                tax_type=TaxType.LONG_TERM if holding_days > self.rates.long_term_threshold_days else TaxType.SHORT_TERM,
                lot_id=lot.lot_id,
            ))

    def get_open_lots(self, symbol: str) -> List[TaxLot]:
        return list(self.open_lots.get(symbol.upper(), []))

    def get_realized_events(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[DisposalRecord]:
        """Disposal records with ``start <= date < end``."""
        return [
            d for d in self.disposals
            if (start is None or d.date >= start) and (end is None or d.date < end)
        ]


def _year_bounds(tax_year: int) -> Tuple[datetime, datetime]:
    return (
        datetime(tax_year, 1, 1, tzinfo=timezone.utc),
        datetime(tax_year + 1, 1, 1, tzinfo=timezone.utc),
    )


def summarize_disposals(
    user_id: str,
    tax_year: int,
    method: AccountingMethod,
    disposals: List[DisposalRecord],
    rates: TaxRates,
) -> TaxCalculation:
    """Sum gains by holding period and apply the flat rates."""
    short_term = sum((d.gain_loss for d in disposals if d.gain_loss is not None and d.tax_type == TaxType.SHORT_TERM), ZERO)
    long_term = sum((d.gain_loss for d in disposals if d.gain_loss is not None and d.tax_type == TaxType.LONG_TERM), ZERO)

    return TaxCalculation(
        user_id=user_id,
        tax_year=tax_year,
        method=method,
        short_term_gains=short_term,
        long_term_gains=long_term,
        total_gains=short_term + long_term,
        total_tax_liability=max(ZERO, short_term) * rates.short_term + max(ZERO, long_term) * rates.long_term,
        transactions=list(disposals),
    )


def calculate_tax(
    user_id: str,
    transactions: List[Transaction],
    tax_year: int,
    method=AccountingMethod.FIFO,
    rates: Optional[TaxRates] = None,
    carry_forward_lots: bool = False,
) -> TaxCalculation:
    """
    Build the TaxCalculation for one user and year.

    By default only transactions inside ``tax_year`` are replayed, so lots
    acquired in earlier years are not available. ``carry_forward_lots``
    replays the full history and reports only the year's disposals.
    """
    rates = rates or TaxRates.from_settings(get_settings())
    start, end = _year_bounds(tax_year)

    if carry_forward_lots:
        window = list(transactions)
    else:
        window = [t for t in transactions if start <= t.timestamp < end]

    engine = TaxLotEngine(window, method=method, rates=rates)
    engine.process_all_transactions()

    calculation = summarize_disposals(
        user_id, tax_year, engine.strategy.get_method_name(),
        engine.get_realized_events(start, end), rates,
    )
    calculation.warnings = list(engine.warnings)
    calculation.created_at = datetime.now(timezone.utc)
    calculation.calculation_hash = calculate_sha256(calculation.hashable_content())

    logger.info(
        f"Tax summary: short {calculation.short_term_gains}, "
        f"long {calculation.long_term_gains}, liability {calculation.total_tax_liability}",
        extra=ingest_context(user=user_id, year=tax_year, method=calculation.method),
    )
    return calculation
