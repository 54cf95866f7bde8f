"""
Duplicate Detection against stored history

Classifies freshly parsed transactions as new or already imported:
1. Transfers carrying an exchange transaction id (TXID/txid/txHash) are
   compared by that id only, case-insensitively.
2. Everything else is compared by (timestamp, symbol, amount, type).

Existing transactions are indexed once, so each lookup is O(1).

Copyright (c) 2026 Andre. All rights reserved.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from parsers.transaction import Transaction, TransactionType
from utils.logging_config import setup_logger

logger = setup_logger(__name__)

TRANSFER_TYPES = (TransactionType.TRANSFER_IN, TransactionType.TRANSFER_OUT)


class DuplicateMatchType(str, Enum):
    TXID = "txid"
    COMPOSITE_KEY = "composite_key"


@dataclass
class DuplicateMatch:
    """A candidate rejected as already stored."""
    transaction: Transaction
    match_type: DuplicateMatchType
    existing_id: str
    reason: str


@dataclass
class DuplicateCheckResult:
    new_transactions: List[Transaction] = field(default_factory=list)
    duplicates: List[DuplicateMatch] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


class DuplicateDetector:
    """
    Detects candidates that already exist in a user's stored transactions.

    The detector works on a snapshot of the history taken at construction;
    accepted candidates are not added to it.
    """

    def __init__(self, existing: Iterable[Transaction]):
        self._by_txid: Dict[str, Transaction] = {}
        self._by_key: Dict[tuple, Transaction] = {}

        count = 0
        for txn in existing:
            count += 1
            txid = txn.exchange_txid()
            if txid:
                self._by_txid.setdefault(txid, txn)
            self._by_key.setdefault(txn.composite_key(), txn)

        logger.debug(f"Indexed {count} existing transactions ({len(self._by_txid)} with txid)")

    def find_duplicate(self, candidate: Transaction) -> Optional[DuplicateMatch]:
        """Return the match for ``candidate`` or None if it is new."""
        if candidate.type in TRANSFER_TYPES:
            txid = candidate.exchange_txid()
            if txid:
                existing = self._by_txid.get(txid)
                if existing is None:
                    return None
                return DuplicateMatch(
                    transaction=candidate,
                    match_type=DuplicateMatchType.TXID,
                    existing_id=existing.id,
                    reason=f"TXID duplicate: {txid}",
                )

        existing = self._by_key.get(candidate.composite_key())
        if existing is None:
            return None
        return DuplicateMatch(
            transaction=candidate,
            match_type=DuplicateMatchType.COMPOSITE_KEY,
            existing_id=existing.id,
            reason="timestamp+symbol+amount+type match",
        )

    def split(self, candidates: Iterable[Transaction]) -> DuplicateCheckResult:
        """Partition candidates into new transactions and duplicates, keeping input order."""
        result = DuplicateCheckResult()
        for candidate in candidates:
            match = self.find_duplicate(candidate)
            if match is None:
                result.new_transactions.append(candidate)
            else:
                result.duplicates.append(match)

        if result.duplicates:
            logger.info(
                f"Skipping {result.duplicate_count} duplicates, "
                f"{len(result.new_transactions)} new transactions"
            )
        return result
