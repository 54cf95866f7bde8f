"""
Ingestion and accounting pipeline

    file bytes -> FileParser -> DuplicateDetector (stored history) -> store
    stored history -> price enrichment -> Portfolio -> UserPortfolio
    stored history -> price enrichment -> TaxLotEngine -> TaxCalculation

Per-user work is independent; ``PortfolioService.calculate_portfolios`` runs
users concurrently, while each user's replay stays sequential.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from calculators.duplicate_detector import DuplicateDetector, DuplicateMatch
from calculators.portfolio import Portfolio, UserPortfolio
from calculators.tax_basis import TaxRates, calculate_tax
from calculators.tax_events import AccountingMethod, TaxCalculation
from core.settings import EngineSettings, get_settings
from parsers.file_parser import FileParseOptions, FileParser
from parsers.transaction import INCOME_TYPES, ParseResult, ProcessingStatus, Transaction, TransactionType
from services.market_data import MarketDataProvider
from services.transaction_store import TransactionStore
from utils.logging_config import get_perf_logger, ingest_context, setup_logger

logger = setup_logger(__name__)

# Types whose zero price means "not quoted in the export"
PRICE_ENRICHED_TYPES = frozenset(INCOME_TYPES | {
    TransactionType.TRANSFER_IN,
    TransactionType.TRANSFER_OUT,
    TransactionType.SELL,
})


@dataclass
class ImportResult:
    parse_result: ParseResult
    status: ProcessingStatus
    message: str
    saved_ids: List[str] = field(default_factory=list)
    duplicates: List[DuplicateMatch] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return self.parse_result.total_rows

    @property
    def valid_transactions(self) -> int:
        return self.parse_result.valid_rows

    @property
    def saved_transactions(self) -> int:
        return len(self.saved_ids)

    @property
    def duplicates_skipped(self) -> int:
        return len(self.duplicates)


def import_file(
    content: bytes,
    filename: str,
    options: FileParseOptions,
    store: TransactionStore,
    parser: Optional[FileParser] = None,
) -> ImportResult:
    """
    Parse an upload, drop transactions already stored for the user, save the rest.

    A file yielding no valid transactions is a failed import and nothing is saved.
    """
    parser = parser or FileParser()
    parse_result = parser.parse_file(content, filename, options)

    if parse_result.status == ProcessingStatus.FAILED:
        logger.warning(
            f"Import of {filename} failed: {len(parse_result.errors)} errors",
            extra=ingest_context(user=options.user_id, file=filename),
        )
        return ImportResult(
            parse_result=parse_result,
            status=ProcessingStatus.FAILED,
            message="File processing failed - no valid transactions found",
        )

    detector = DuplicateDetector(store.get_user_transactions(options.user_id))
    check = detector.split(parse_result.transactions)
    saved_ids = store.save_transactions_batch(check.new_transactions) if check.new_transactions else []

    message = (
        f"Imported {len(saved_ids)} of {parse_result.valid_rows} valid transactions "
        f"({check.duplicate_count} duplicates skipped, {len(parse_result.errors)} rows rejected)"
    )
    logger.info(message, extra=ingest_context(user=options.user_id, file=filename))

    return ImportResult(
        parse_result=parse_result,
        status=parse_result.status,
        message=message,
        saved_ids=saved_ids,
        duplicates=check.duplicates,
    )


def enrich_prices(transactions: List[Transaction], provider: Optional[MarketDataProvider]) -> List[Transaction]:
    """
    Fill zero prices from historical market data.

    Transactions are immutable, so enriched rows are copies. Rows whose
    price stays unknown are returned unchanged.
    """
    if provider is None:
        return list(transactions)

    enriched = []
    filled = 0
    for t in transactions:
        if t.price == 0 and t.type in PRICE_ENRICHED_TYPES and t.amount > 0:
            price = provider.get_price_at_timestamp(t.symbol, t.timestamp)
            if price is not None and price > 0:
                update = {'price': price}
                if t.type != TransactionType.TRANSFER_OUT:
                    update['total_value'] = t.amount * price
                t = t.model_copy(update=update)
                filled += 1
        enriched.append(t)

    if filled:
        logger.info(f"Filled {filled} missing prices from market data")
    return enriched


class PortfolioService:
    """Recomputes derived portfolio and tax artifacts from stored transactions."""

    def __init__(
        self,
        store: TransactionStore,
        market_data: Optional[MarketDataProvider] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.market_data = market_data
        self.settings = settings or get_settings()

    def _history(self, user_id: str) -> List[Transaction]:
        return enrich_prices(self.store.get_user_transactions(user_id), self.market_data)

    def calculate_user_portfolio(self, user_id: str) -> UserPortfolio:
        """Full replay of the user's history, valued at current prices and saved."""
        with get_perf_logger(logger, f"portfolio for {user_id}", threshold_ms=3000):
            portfolio = Portfolio(self._history(user_id))

            held = [s for s, state in portfolio.get_holdings().items() if state.amount > 0]
            prices: Dict[str, Optional[Decimal]] = {}
            changes: Dict[str, Optional[Decimal]] = {}
            if held and self.market_data is not None:
                for quote in self.market_data.get_current_prices(held):
                    prices[quote.symbol] = quote.price
                    changes[quote.symbol] = quote.change_24h

            result = portfolio.value(user_id, prices, changes)

        self.store.save_user_portfolio(result)
        return result

    def calculate_portfolios(self, user_ids: List[str], max_workers: int = 4) -> Dict[str, UserPortfolio]:
        """Recompute several users in parallel; a failing user is logged and left out."""
        results: Dict[str, UserPortfolio] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.calculate_user_portfolio, uid): uid for uid in user_ids}
            for future in as_completed(futures):
                uid = futures[future]
                try:
                    results[uid] = future.result()
                except Exception as e:
                    logger.error(f"Portfolio calculation failed for {uid}: {e}", exc_info=True)
        return results

    def calculate_tax_liability(
        self,
        user_id: str,
        tax_year: int,
        method=AccountingMethod.FIFO,
        carry_forward_lots: bool = False,
    ) -> TaxCalculation:
        calculation = calculate_tax(
            user_id,
            self._history(user_id),
            tax_year,
            method=method,
            rates=TaxRates.from_settings(self.settings),
            carry_forward_lots=carry_forward_lots,
        )
        self.store.save_tax_calculation(calculation)
        return calculation
