"""
Exchange Format Detector

Classifies a dataset by its header row. Rules are ordered; the first rule
whose required tokens all appear (and whose excluded tokens do not) wins.
Matching is a case-insensitive substring test against the comma-joined
header line, so "Fee Coin" and "fee coin" behave the same.
"""

from typing import Iterable, List, NamedTuple, Optional, Tuple

from parsers.transaction import ExchangeType
from utils.logging_config import setup_logger

logger = setup_logger(__name__)


class DetectionRule(NamedTuple):
    exchange: ExchangeType
    required: Tuple[str, ...]
    excluded: Tuple[str, ...] = ()


DETECTION_RULES: List[DetectionRule] = [
    DetectionRule(ExchangeType.BINANCE_SPOT, ('market', 'fee coin')),
    DetectionRule(ExchangeType.BINANCE_DEPOSIT, ('coin', 'network', 'txid'), excluded=('transaction id',)),
    DetectionRule(ExchangeType.BINANCE_WITHDRAWAL, ('coin', 'network', 'transaction id')),
    DetectionRule(ExchangeType.COINBASE, ('transaction type', 'spot price currency')),
    DetectionRule(ExchangeType.KRAKEN, ('txid', 'ordertxid')),
]


def header_signature(headers: Iterable[str]) -> str:
    return ','.join(str(h).strip().lower() for h in headers)


def detect_exchange_format(headers: Iterable[str]) -> ExchangeType:
    """
    Return the schema tag for a header row, or ``ExchangeType.OTHER``.

    >>> detect_exchange_format(['Date', 'Market', 'Type', 'Price', 'Amount', 'Total', 'Fee', 'Fee Coin'])
    <ExchangeType.BINANCE_SPOT: 'binance_spot'>
    """
    signature = header_signature(headers)

    for rule in DETECTION_RULES:
        if all(token in signature for token in rule.required) and \
           not any(token in signature for token in rule.excluded):
            logger.debug(f"Detected {rule.exchange.value} format")
            return rule.exchange

    logger.debug("No exchange schema matched, using generic mapping")
    return ExchangeType.OTHER


def resolve_exchange_hint(hint: Optional[str]) -> Optional[ExchangeType]:
    """
    Turn a caller-supplied hint into a schema tag.

    ``None``, empty and ``"auto"`` mean auto-detect and return ``None``.

    Raises:
        ValueError: For hints outside the known schema set.
    """
    if hint is None:
        return None
    value = str(hint).strip().lower()
    if value in ('', 'auto'):
        return None
    try:
        return ExchangeType(value)
    except ValueError:
        supported = ', '.join(e.value for e in ExchangeType)
        raise ValueError(f"Unknown exchange '{hint}'. Supported: {supported}") from None


class SupportedExchange(NamedTuple):
    name: str
    value: str
    description: str


EXCHANGE_DESCRIPTIONS = {
    ExchangeType.BINANCE_SPOT: ('Binance Spot', 'Binance Spot Trading History CSV'),
    ExchangeType.BINANCE_DEPOSIT: ('Binance Deposits', 'Binance Deposit History CSV'),
    ExchangeType.BINANCE_WITHDRAWAL: ('Binance Withdrawals', 'Binance Withdrawal History CSV'),
    ExchangeType.COINBASE: ('Coinbase', 'Coinbase Transaction History CSV'),
    ExchangeType.KRAKEN: ('Kraken', 'Kraken Ledger History CSV'),
    ExchangeType.OTHER: ('Other/Generic', 'Generic CSV format with standard columns'),
}


def list_supported_exchanges() -> List[SupportedExchange]:
    """Display name, hint value and description of every schema, in declaration order."""
    return [
        SupportedExchange(name=EXCHANGE_DESCRIPTIONS[e][0], value=e.value, description=EXCHANGE_DESCRIPTIONS[e][1])
        for e in ExchangeType
    ]
