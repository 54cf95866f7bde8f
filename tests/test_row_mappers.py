"""
Unit tests for the per-exchange row mappers.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings as hypothesis_settings, strategies as st

from core.settings import EngineSettings
from parsers.csv_parser import CSVParser
from parsers.row_mappers import (
    map_binance_deposit,
    map_binance_spot,
    map_binance_withdrawal,
    map_coinbase,
    map_generic,
    map_kraken,
    resolve_generic_columns,
    split_trading_pair,
)
from parsers.spreadsheet_extractor import rows_to_csv
from parsers.transaction import (
    ExchangeType,
    MissingColumnsError,
    ParseError,
    TransactionType,
    TransactionTypeError,
)


class TestSplitTradingPair:

    @pytest.mark.parametrize("pair, expected", [
        ("BTCUSDT", ("BTC", "USDT")),
        ("ETHBTC", ("ETH", "BTC")),
        ("SOLBUSD", ("SOL", "BUSD")),
        ("ADAEUR", ("ADA", "EUR")),
        ("BNBUSDC", ("BNB", "USDC")),
        ("solusdt", ("SOL", "USDT")),
    ])
    def test_known_quotes(self, pair, expected):
        assert split_trading_pair(pair) == expected

    def test_unknown_quote_short_symbol_takes_three(self):
        assert split_trading_pair("SOLTRY") == ("SOL", "TRY")

    def test_unknown_quote_long_symbol_takes_four(self):
        assert split_trading_pair("SHIBXXXX") == ("SHIB", "XXXX")

    def test_too_short_raises(self):
        with pytest.raises(ParseError):
            split_trading_pair("BTC")


class TestBinanceSpot:

    ROW = {
        'Date': '2024-01-15 10:00:00', 'Market': 'BTCUSDT', 'Type': 'BUY', 'Price': '42000.00',
        'Amount': '0.5', 'Total': '21000.00', 'Fee': '0.0005', 'Fee Coin': 'BNB',
    }

    def test_maps_all_fields(self):
        txn = map_binance_spot(dict(self.ROW), 'user-1')
        assert txn.type == TransactionType.BUY
        assert txn.symbol == 'BTC'
        assert txn.amount == Decimal('0.5')
        assert txn.price == Decimal('42000.00')
        assert txn.total_value == Decimal('21000.00')
        assert txn.fee == Decimal('0.0005')
        assert txn.fee_currency == 'BNB'
        assert txn.exchange == ExchangeType.BINANCE_SPOT
        assert txn.timestamp == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
        assert txn.raw_data['Market'] == 'BTCUSDT'

    def test_bad_amount_names_the_field(self):
        row = dict(self.ROW, Amount='lots')
        with pytest.raises(ParseError) as exc_info:
            map_binance_spot(row, 'user-1')
        assert exc_info.value.field == 'Amount'
        assert exc_info.value.value == 'lots'


class TestBinanceDepositWithdrawal:

    DEPOSIT = {
        'Date(UTC+0)': '2024-01-15 10:00:00', 'Coin': 'USDT', 'Network': 'ETH', 'Amount': '500.00',
        'Address': '0xabc', 'TXID': 'TXID123', 'Status': 'Completed',
    }

    def test_stablecoin_deposit_is_pegged(self):
        txn = map_binance_deposit(dict(self.DEPOSIT), 'user-1')
        assert txn.type == TransactionType.TRANSFER_IN
        assert txn.symbol == 'USDT'
        assert txn.amount == Decimal('500')
        assert txn.price == Decimal('1')
        assert txn.total_value == Decimal('500')
        assert txn.fee == 0
        assert 'TXID123' in txn.notes

    def test_non_stablecoin_deposit_has_unknown_price(self):
        row = dict(self.DEPOSIT, Coin='BTC', Amount='0.25')
        txn = map_binance_deposit(row, 'user-1')
        assert txn.price == 0
        assert txn.total_value == Decimal('0.25')

    def test_peg_can_be_disabled(self):
        settings = EngineSettings(assume_stablecoin_peg=False)
        txn = map_binance_deposit(dict(self.DEPOSIT), 'user-1', settings)
        assert txn.price == 0

    def test_withdrawal_total_includes_fee(self):
        row = {
            'Date(UTC+0)': '2024-02-01 08:00:00', 'Coin': 'ETH', 'Network': 'ETH', 'Amount': '1.5',
            'Transaction Fee': '0.005', 'Address': '0xdef', 'Transaction ID': '0xhash', 'Status': 'Completed',
        }
        txn = map_binance_withdrawal(row, 'user-1')
        assert txn.type == TransactionType.TRANSFER_OUT
        assert txn.fee == Decimal('0.005')
        assert txn.total_value == Decimal('1.505')
        assert txn.price == 0


class TestCoinbase:

    def _row(self, **overrides):
        row = {
            'Timestamp': '2024-03-01T09:15:00Z', 'Transaction Type': 'Buy', 'Asset': 'eth',
            'Quantity Transacted': '2', 'Spot Price Currency': 'USD', 'Spot Price at Transaction': '$3,000.00',
            'Subtotal': '6000', 'Total (inclusive of fees and/or spread)': '6010.00',
            'Fees and/or Spread': '10.00', 'Notes': 'Bought 2 ETH',
        }
        row.update(overrides)
        return row

    def test_buy(self):
        txn = map_coinbase(self._row(), 'user-1')
        assert txn.type == TransactionType.BUY
        assert txn.symbol == 'ETH'
        assert txn.price == Decimal('3000.00')
        assert txn.total_value == Decimal('6010.00')
        assert txn.fee == Decimal('10.00')
        assert txn.fee_currency == 'USD'

    @pytest.mark.parametrize("raw_type, expected", [
        ('Send', TransactionType.TRANSFER_OUT),
        ('Receive', TransactionType.TRANSFER_IN),
        ('Coinbase Earn', TransactionType.REWARD),
        ('Learning Reward', TransactionType.REWARD),
        ('Staking Income', TransactionType.STAKE),
        ('Convert', TransactionType.OTHER),
    ])
    def test_type_table(self, raw_type, expected):
        assert map_coinbase(self._row(**{'Transaction Type': raw_type}), 'user-1').type == expected

    def test_amount_is_absolute(self):
        txn = map_coinbase(self._row(**{'Transaction Type': 'Send', 'Quantity Transacted': '-0.75'}), 'user-1')
        assert txn.amount == Decimal('0.75')


class TestKraken:

    ROW = {
        'txid': 'TX1', 'ordertxid': 'O1', 'pair': 'XBT/USD', 'time': '2024-01-05 14:30:00.1234',
        'type': 'sell', 'ordertype': 'limit', 'price': '45000.0', 'cost': '4500.0', 'fee': '11.7',
        'vol': '0.1', 'margin': '0', 'misc': '', 'ledgers': 'L1',
    }

    def test_maps_pair_and_fee_currency(self):
        txn = map_kraken(dict(self.ROW), 'user-1')
        assert txn.symbol == 'XBT'
        assert txn.fee_currency == 'USD'
        assert txn.type == TransactionType.SELL
        assert txn.amount == Decimal('0.1')
        assert txn.total_value == Decimal('4500.0')

    def test_unknown_type_is_rejected(self):
        with pytest.raises(TransactionTypeError):
            map_kraken(dict(self.ROW, type='margin-call'), 'user-1')


class TestGenericMapper:

    def test_resolution_prefers_exact_matches(self):
        columns = resolve_generic_columns(['Time', 'Side', 'Asset', 'Quantity', 'Unit_Price', 'Commission', 'Value'])
        assert columns.date == 'Time'
        assert columns.type == 'Side'
        assert columns.symbol == 'Asset'
        assert columns.amount == 'Quantity'
        assert columns.price == 'Unit_Price'
        assert columns.fee == 'Commission'
        assert columns.total == 'Value'

    def test_substring_match(self):
        columns = resolve_generic_columns(['Trade Date', 'Coin Symbol', 'Amount Filled'])
        assert columns.date == 'Trade Date'
        assert columns.symbol == 'Coin Symbol'
        assert columns.amount == 'Amount Filled'

    def test_defaults_when_optional_columns_absent(self):
        row = {'date': '2024-01-01', 'symbol': 'ada', 'amount': '100'}
        txn = map_generic(row, 'user-1')
        assert txn.type == TransactionType.TRADE
        assert txn.symbol == 'ADA'
        assert txn.price == 0
        assert txn.fee == 0
        assert txn.total_value == 0

    def test_missing_mandatory_columns(self):
        with pytest.raises(MissingColumnsError, match="Required columns not found"):
            map_generic({'date': '2024-01-01', 'price': '3'}, 'user-1')

    def test_type_aliases(self):
        row = {'date': '2024-01-01', 'symbol': 'BTC', 'amount': '1', 'type': 'Deposit'}
        assert map_generic(row, 'user-1').type == TransactionType.TRANSFER_IN


EXPORT_HEADERS = {
    ExchangeType.BINANCE_SPOT: ['Date', 'Market', 'Type', 'Price', 'Amount', 'Total', 'Fee', 'Fee Coin'],
    ExchangeType.BINANCE_DEPOSIT: ['Date(UTC+0)', 'Coin', 'Network', 'Amount', 'Address', 'TXID', 'Status'],
    ExchangeType.BINANCE_WITHDRAWAL: [
        'Date(UTC+0)', 'Coin', 'Network', 'Amount', 'Transaction Fee', 'Address', 'Transaction ID', 'Status'
    ],
    ExchangeType.COINBASE: [
        'Timestamp', 'Transaction Type', 'Asset', 'Quantity Transacted', 'Spot Price Currency',
        'Spot Price at Transaction', 'Subtotal', 'Total (inclusive of fees and/or spread)',
        'Fees and/or Spread', 'Notes'
    ],
    ExchangeType.KRAKEN: [
        'txid', 'ordertxid', 'pair', 'time', 'type', 'ordertype', 'price', 'cost', 'fee', 'vol',
        'margin', 'misc', 'ledgers'
    ],
    ExchangeType.OTHER: ['date', 'type', 'symbol', 'amount', 'price'],
}

MAPPERS = {
    ExchangeType.BINANCE_SPOT: map_binance_spot,
    ExchangeType.BINANCE_DEPOSIT: map_binance_deposit,
    ExchangeType.BINANCE_WITHDRAWAL: map_binance_withdrawal,
    ExchangeType.COINBASE: map_coinbase,
    ExchangeType.KRAKEN: map_kraken,
    ExchangeType.OTHER: map_generic,
}


def export_row(exchange, when, symbol, amount):
    """One export line in the exchange's own layout."""
    stamp = when.strftime('%Y-%m-%d %H:%M:%S')
    values = {
        ExchangeType.BINANCE_SPOT: [stamp, f"{symbol}USDT", 'BUY', '10.5', amount, '100', '0.1', 'BNB'],
        ExchangeType.BINANCE_DEPOSIT: [stamp, symbol, symbol, amount, 'addr-1', 'tx-1', 'Completed'],
        ExchangeType.BINANCE_WITHDRAWAL: [stamp, symbol, symbol, amount, '0.01', 'addr-1', 'tx-1', 'Completed'],
        ExchangeType.COINBASE: [
            stamp, 'Buy', symbol, amount, 'USD', '10.5', '100', '101', '1', f"Bought {symbol}, via app"
        ],
        ExchangeType.KRAKEN: [
            'T1', 'O1', f"{symbol}/USD", stamp, 'buy', 'limit', '10.5', '100', '0.1', amount, '0', '', 'L1'
        ],
        ExchangeType.OTHER: [stamp, 'buy', symbol, amount, '10.5'],
    }[exchange]
    return dict(zip(EXPORT_HEADERS[exchange], values))


@given(
    exchange=st.sampled_from(list(EXPORT_HEADERS)),
    when=st.datetimes(min_value=datetime(2015, 1, 1), max_value=datetime(2024, 12, 31)),
    symbol=st.sampled_from(['BTC', 'ETH', 'SOL', 'ADA', 'DOT']),
    amount=st.decimals(min_value=Decimal('0.00000001'), max_value=Decimal('10000000'), places=8),
    grouped=st.booleans(),
)
@hypothesis_settings(max_examples=150, deadline=None)
def test_mapped_row_survives_csv_serialization(exchange, when, symbol, amount, grouped):
    """Mapping a row directly and re-parsing it from CSV text agree on symbol, amount and time."""
    when = when.replace(microsecond=0, tzinfo=timezone.utc)
    text_amount = format(amount, ',f' if grouped else 'f')
    row = export_row(exchange, when, symbol, text_amount)

    direct = MAPPERS[exchange](row, 'user-1', EngineSettings())
    content = rows_to_csv([EXPORT_HEADERS[exchange], list(row.values())])
    result = CSVParser(EngineSettings()).parse_csv(content, 'user-1', exchange=exchange)

    assert not result.errors
    reparsed = result.transactions[0]
    assert (reparsed.symbol, reparsed.amount, reparsed.timestamp) == (direct.symbol, direct.amount, direct.timestamp)
    assert direct.symbol == symbol
    assert direct.amount == amount
    assert direct.timestamp == when
