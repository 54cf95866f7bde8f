"""
Transaction storage contract

The engine reads a user's full history and appends new batches; it never
updates stored transactions. Duplicate checks happen in the engine, not
in the store. ``InMemoryTransactionStore`` implements the contract for
tests and single-process use.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional

from calculators.portfolio import UserPortfolio
from calculators.tax_events import TaxCalculation
from parsers.transaction import Transaction
from utils.logging_config import setup_logger

logger = setup_logger(__name__)


class TransactionStore(ABC):

    @abstractmethod
    def get_user_transactions(self, user_id: str) -> List[Transaction]:
        """All of a user's transactions, in any order."""

    @abstractmethod
    def save_transactions_batch(self, transactions: List[Transaction]) -> List[str]:
        """Append transactions; return their ids in input order."""

    @abstractmethod
    def get_user_portfolio(self, user_id: str) -> Optional[UserPortfolio]:
        pass

    @abstractmethod
    def save_user_portfolio(self, portfolio: UserPortfolio) -> None:
        pass

    def save_tax_calculation(self, calculation: TaxCalculation) -> None:
        """Optional; stores that keep no reports ignore it."""
        logger.debug(f"Tax calculation for {calculation.user_id}/{calculation.tax_year} not persisted")


class InMemoryTransactionStore(TransactionStore):

    def __init__(self):
        self._transactions: Dict[str, List[Transaction]] = defaultdict(list)
        self._portfolios: Dict[str, UserPortfolio] = {}
        self._tax_calculations: Dict[tuple, TaxCalculation] = {}
        self._lock = threading.Lock()

    def get_user_transactions(self, user_id: str) -> List[Transaction]:
        with self._lock:
            return list(self._transactions.get(user_id, []))

    def save_transactions_batch(self, transactions: List[Transaction]) -> List[str]:
        with self._lock:
            for t in transactions:
                self._transactions[t.user_id].append(t)
        logger.info(f"Saved {len(transactions)} transactions")
        return [t.id for t in transactions]

    def get_user_portfolio(self, user_id: str) -> Optional[UserPortfolio]:
        with self._lock:
            return self._portfolios.get(user_id)

    def save_user_portfolio(self, portfolio: UserPortfolio) -> None:
        with self._lock:
            self._portfolios[portfolio.user_id] = portfolio

    def save_tax_calculation(self, calculation: TaxCalculation) -> None:
        with self._lock:
            self._tax_calculations[(calculation.user_id, calculation.tax_year, calculation.method)] = calculation

    def get_tax_calculation(self, user_id: str, tax_year: int, method) -> Optional[TaxCalculation]:
        with self._lock:
            return self._tax_calculations.get((user_id, tax_year, method))
