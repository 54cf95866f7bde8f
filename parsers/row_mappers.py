"""
Row Mappers - one pure function per exchange schema

Each mapper takes a raw row (header -> cell text) and returns a canonical
``Transaction`` or raises ``ParseError``. Mappers are dispatched by the
schema tag from the format detector; none of them guesses column names at
runtime except the generic mapper, whose column resolution happens once per
dataset in ``resolve_generic_columns``.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core.settings import EngineSettings, get_settings
from parsers.transaction import (
    ExchangeType,
    MissingColumnsError,
    ParseError,
    Transaction,
    TransactionType,
)
from parsers.value_parsers import (
    parse_date,
    parse_number,
    parse_optional_number,
    parse_optional_text,
)

RawRow = Dict[str, str]

# Longest/most specific first so "BTCUSDT" splits as BTC/USDT, not BTCUSD/T
QUOTE_CURRENCIES = ['USDT', 'USDC', 'BUSD', 'BNB', 'ETH', 'BTC', 'USD', 'EUR', 'GBP']

COINBASE_TYPE_MAP = {
    'buy': TransactionType.BUY,
    'sell': TransactionType.SELL,
    'send': TransactionType.TRANSFER_OUT,
    'receive': TransactionType.TRANSFER_IN,
    'coinbase earn': TransactionType.REWARD,
    'learning reward': TransactionType.REWARD,
    'staking income': TransactionType.STAKE,
}

GENERIC_SYNONYMS: Dict[str, List[str]] = {
    'date': ['date', 'timestamp', 'time', 'datetime'],
    'type': ['type', 'side', 'transaction_type', 'action'],
    'symbol': ['symbol', 'asset', 'coin', 'currency', 'pair'],
    'amount': ['amount', 'quantity', 'qty', 'volume', 'vol'],
    'price': ['price', 'rate', 'unit_price'],
    'fee': ['fee', 'fees', 'commission'],
    'total': ['total', 'value', 'total_value'],
}

MANDATORY_GENERIC_FIELDS = ('date', 'symbol', 'amount')


def split_trading_pair(pair: str) -> Tuple[str, str]:
    """
    Split a concatenated market symbol into (base, quote).

    >>> split_trading_pair('BTCUSDT')
    ('BTC', 'USDT')
    >>> split_trading_pair('SOLTRY')
    ('SOL', 'TRY')
    """
    market = pair.strip().upper()
    for quote in QUOTE_CURRENCIES:
        if market.endswith(quote) and len(market) > len(quote):
            return market[:-len(quote)], quote

    # Unknown quote: assume a 4-letter quote on long symbols, 3 letters otherwise
    quote_length = 4 if len(market) > 6 else 3
    if len(market) <= quote_length:
        raise ParseError(f"Cannot split trading pair: {pair}", value=pair, field='Market')
    return market[:-quote_length], market[-quote_length:]


def _get(row: RawRow, name: str, required: bool = True) -> Optional[str]:
    """
    Look up a column by exact name, then case-insensitively, then by prefix.

    The prefix step covers exports that decorate headers, e.g. Coinbase's
    "Total (inclusive of fees and/or spread)".
    """
    if name in row:
        value = row[name]
    else:
        wanted = name.strip().lower()
        value = None
        found = False
        for key, cell in row.items():
            if str(key).strip().lower() == wanted:
                value, found = cell, True
                break
        if not found:
            for key, cell in row.items():
                if str(key).strip().lower().startswith(wanted):
                    value, found = cell, True
                    break
        if not found and required:
            raise ParseError(f"Missing column: {name}", value=None, field=name)

    if value is not None:
        value = str(value).strip()

    if required and not value:
        raise ParseError(f"Empty value in column: {name}", value=value, field=name)
    return value or None


def _number(row: RawRow, name: str) -> Decimal:
    raw = _get(row, name)
    try:
        return parse_number(raw)
    except ParseError as e:
        raise ParseError(e.message, value=raw, field=name) from None


def _optional_number(row: RawRow, name: str) -> Decimal:
    raw = _get(row, name, required=False)
    try:
        return parse_optional_number(raw)
    except ParseError as e:
        raise ParseError(e.message, value=raw, field=name) from None


def _date(row: RawRow, name: str):
    raw = _get(row, name)
    try:
        return parse_date(raw)
    except ParseError as e:
        raise ParseError(e.message, value=raw, field=name) from None


def map_binance_spot(row: RawRow, user_id: str, settings: Optional[EngineSettings] = None) -> Transaction:
    """Binance trade history: Date, Market, Type, Price, Amount, Total, Fee, Fee Coin."""
    base, _quote = split_trading_pair(_get(row, 'Market'))
    return Transaction(
        user_id=user_id,
        timestamp=_date(row, 'Date'),
        type=TransactionType.normalize(_get(row, 'Type')),
        symbol=base,
        amount=_number(row, 'Amount'),
        price=_number(row, 'Price'),
        fee=_optional_number(row, 'Fee'),
        fee_currency=parse_optional_text(_get(row, 'Fee Coin', required=False)),
        total_value=_number(row, 'Total'),
        exchange=ExchangeType.BINANCE_SPOT,
        raw_data=dict(row),
    )


def map_binance_deposit(row: RawRow, user_id: str, settings: Optional[EngineSettings] = None) -> Transaction:
    """Binance deposit history: Date(UTC+0), Coin, Network, Amount, Address, TXID, Status."""
    settings = settings or get_settings()
    coin = _get(row, 'Coin').upper()
    amount = _number(row, 'Amount')
    network = _get(row, 'Network', required=False) or 'unknown'
    txid = _get(row, 'TXID', required=False) or ''

    return Transaction(
        user_id=user_id,
        timestamp=_date(row, 'Date(UTC+0)'),
        type=TransactionType.TRANSFER_IN,
        symbol=coin,
        amount=amount,
        price=settings.stablecoin_price(coin),
        fee=Decimal(0),
        fee_currency=coin,
        total_value=amount,
        exchange=ExchangeType.BINANCE_DEPOSIT,
        notes=f"Deposit via {network} network. TXID: {txid}",
        raw_data=dict(row),
    )


def map_binance_withdrawal(row: RawRow, user_id: str, settings: Optional[EngineSettings] = None) -> Transaction:
    """Binance withdrawal history; the fee is deducted from the withdrawn amount."""
    settings = settings or get_settings()
    coin = _get(row, 'Coin').upper()
    amount = _number(row, 'Amount')
    fee = _optional_number(row, 'Transaction Fee')
    network = _get(row, 'Network', required=False) or 'unknown'
    txid = _get(row, 'Transaction ID', required=False) or ''

    return Transaction(
        user_id=user_id,
        timestamp=_date(row, 'Date(UTC+0)'),
        type=TransactionType.TRANSFER_OUT,
        symbol=coin,
        amount=amount,
        price=settings.stablecoin_price(coin),
        fee=fee,
        fee_currency=coin,
        total_value=amount + fee,
        exchange=ExchangeType.BINANCE_WITHDRAWAL,
        notes=f"Withdrawal via {network} network. Transaction ID: {txid}",
        raw_data=dict(row),
    )


def map_coinbase(row: RawRow, user_id: str, settings: Optional[EngineSettings] = None) -> Transaction:
    """Coinbase transaction report. Direction lives in the type, so amounts are absolute."""
    raw_type = _get(row, 'Transaction Type')
    tx_type = COINBASE_TYPE_MAP.get(raw_type.strip().lower(), TransactionType.OTHER)

    amount = abs(_number(row, 'Quantity Transacted'))
    price = abs(_optional_number(row, 'Spot Price at Transaction'))
    total = abs(_optional_number(row, 'Total'))
    if total == 0:
        total = amount * price

    return Transaction(
        user_id=user_id,
        timestamp=_date(row, 'Timestamp'),
        type=tx_type,
        symbol=_get(row, 'Asset'),
        amount=amount,
        price=price,
        fee=abs(_optional_number(row, 'Fees')),
        fee_currency=parse_optional_text(_get(row, 'Spot Price Currency', required=False)),
        total_value=total,
        exchange=ExchangeType.COINBASE,
        notes=parse_optional_text(_get(row, 'Notes', required=False)),
        raw_data=dict(row),
    )


def map_kraken(row: RawRow, user_id: str, settings: Optional[EngineSettings] = None) -> Transaction:
    """Kraken trades export: pair "XBT/USD", type taken verbatim and validated."""
    pair = _get(row, 'pair')
    if '/' in pair:
        base, quote = (part.strip() for part in pair.split('/', 1))
    else:
        base, quote = split_trading_pair(pair)
    if not base:
        raise ParseError(f"Cannot split trading pair: {pair}", value=pair, field='pair')

    return Transaction(
        user_id=user_id,
        timestamp=_date(row, 'time'),
        type=TransactionType.normalize(_get(row, 'type')),
        symbol=base,
        amount=_number(row, 'vol'),
        price=_number(row, 'price'),
        fee=_optional_number(row, 'fee'),
        fee_currency=quote or None,
        total_value=_number(row, 'cost'),
        exchange=ExchangeType.KRAKEN,
        raw_data=dict(row),
    )


@dataclass(frozen=True)
class GenericColumnMap:
    """Header names chosen for each canonical field of a generic dataset."""

    date: Optional[str] = None
    type: Optional[str] = None
    symbol: Optional[str] = None
    amount: Optional[str] = None
    price: Optional[str] = None
    fee: Optional[str] = None
    total: Optional[str] = None

    def missing_mandatory(self) -> List[str]:
        return [name for name in MANDATORY_GENERIC_FIELDS if getattr(self, name) is None]


def _find_column(headers: List[str], synonyms: List[str]) -> Optional[str]:
    lowered = [(h, str(h).strip().lower()) for h in headers]
    for synonym in synonyms:
        for header, low in lowered:
            if low == synonym:
                return header
    for synonym in synonyms:
        for header, low in lowered:
            if synonym in low:
                return header
    return None


def resolve_generic_columns(headers: Iterable[str]) -> GenericColumnMap:
    """
    Match dataset headers against the synonym lists, exact match first and
    substring match second. Missing optional columns stay ``None``.
    """
    header_list = [h for h in headers if str(h).strip()]
    return GenericColumnMap(**{
        field_name: _find_column(header_list, synonyms)
        for field_name, synonyms in GENERIC_SYNONYMS.items()
    })


def map_generic(
    row: RawRow,
    user_id: str,
    settings: Optional[EngineSettings] = None,
    columns: Optional[GenericColumnMap] = None,
) -> Transaction:
    """Fallback mapper for unrecognized layouts; date, symbol and amount are mandatory."""
    columns = columns or resolve_generic_columns(row.keys())
    missing = columns.missing_mandatory()
    if missing:
        raise MissingColumnsError(
            f"Required columns not found: {', '.join(missing)}",
            value=None,
            field=missing[0],
        )

    tx_type = TransactionType.TRADE
    if columns.type:
        raw_type = _get(row, columns.type, required=False)
        if raw_type:
            tx_type = TransactionType.normalize(raw_type)

    amount = _number(row, columns.amount)
    price = _optional_number(row, columns.price) if columns.price else Decimal(0)
    fee = _optional_number(row, columns.fee) if columns.fee else Decimal(0)
    total = _optional_number(row, columns.total) if columns.total else Decimal(0)

    return Transaction(
        user_id=user_id,
        timestamp=_date(row, columns.date),
        type=tx_type,
        symbol=_get(row, columns.symbol),
        amount=amount,
        price=price,
        fee=fee,
        total_value=total,
        exchange=ExchangeType.OTHER,
        raw_data=dict(row),
    )


RowMapper = Callable[..., Transaction]

ROW_MAPPERS: Dict[ExchangeType, RowMapper] = {
    ExchangeType.BINANCE_SPOT: map_binance_spot,
    ExchangeType.BINANCE_DEPOSIT: map_binance_deposit,
    ExchangeType.BINANCE_WITHDRAWAL: map_binance_withdrawal,
    ExchangeType.COINBASE: map_coinbase,
    ExchangeType.KRAKEN: map_kraken,
    ExchangeType.OTHER: map_generic,
}
