"""
Tests for CSV dataset parsing: detection, row-scoped errors, counters.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from parsers.csv_parser import CSVParser
from parsers.transaction import ExchangeType, ProcessingStatus, Severity, TransactionType


@pytest.fixture
def parser():
    return CSVParser()


BINANCE_SPOT_CSV = """Date,Market,Type,Price,Amount,Total,Fee,Fee Coin
2024-01-15 10:00:00,BTCUSDT,BUY,42000.00,0.5,21000.00,0.0005,BNB
2024-01-16 11:00:00,ETHUSDT,BUY,2500.00,2,5000.00,0.002,BNB
2024-01-20 09:30:00,BTCUSDT,SELL,45000.00,0.2,9000.00,0.0002,BNB
"""


class TestCSVParser:

    def test_binance_deposit_scenario(self, parser):
        content = (
            "Date(UTC+0),Coin,Network,Amount,Address,TXID,Status\n"
            "2024-01-15 10:00:00,USDT,ETH,500.00,0xabc,TXID123,Completed\n"
        )
        result = parser.parse_csv(content, 'user-1')

        assert result.valid_rows == 1
        txn = result.transactions[0]
        assert txn.type == TransactionType.TRANSFER_IN
        assert txn.symbol == 'USDT'
        assert txn.amount == Decimal('500')
        assert txn.price == Decimal('1')
        assert txn.total_value == Decimal('500')
        assert txn.exchange == ExchangeType.BINANCE_DEPOSIT

    def test_binance_spot_rows_in_input_order(self, parser):
        result = parser.parse_csv(BINANCE_SPOT_CSV, 'user-1')
        assert result.total_rows == 3
        assert [t.symbol for t in result.transactions] == ['BTC', 'ETH', 'BTC']
        assert [t.type for t in result.transactions] == [TransactionType.BUY, TransactionType.BUY, TransactionType.SELL]
        assert result.status == ProcessingStatus.COMPLETED

    def test_three_bad_rows_out_of_ten(self, parser):
        lines = ["date,symbol,amount,price"]
        for i in range(10):
            amount = "not-a-number" if i in (2, 5, 8) else "1.5"
            lines.append(f"2024-01-{i + 1:02d},BTC,{amount},40000")
        result = parser.parse_csv("\n".join(lines) + "\n", 'user-1')

        assert result.total_rows == 10
        assert result.valid_rows == 7
        assert len(result.transactions) == 7
        assert len(result.errors) >= 3
        assert sorted(e.row for e in result.errors) == [3, 6, 9]
        assert all(e.field == 'amount' for e in result.errors)
        assert result.status == ProcessingStatus.PARTIAL

    def test_malformed_line_keeps_its_row_number(self, parser):
        content = (
            "date,symbol,amount\n"
            "2024-01-01,BTC,1\n"
            "2024-01-02,BTC,1,extra,fields\n"
            "2024-01-03,BTC,oops\n"
        )
        result = parser.parse_csv(content, 'user-1')

        assert result.total_rows == 3
        assert result.valid_rows == 1
        rows = {e.field: e.row for e in result.errors}
        assert rows == {'line': 2, 'amount': 3}
        assert "expected 3 fields, got 5" in result.errors[0].message

    def test_blank_lines_are_not_counted_as_rows(self, parser):
        content = "date,symbol,amount\n2024-01-01,BTC,1\n\n2024-01-02,BTC,bad\n"
        result = parser.parse_csv(content, 'user-1')
        assert [e.row for e in result.errors] == [2]

    def test_parser_instance_is_reusable_across_delimiters(self, parser):
        first = parser.parse_csv("date;symbol;amount\n2024-01-01;SOL;3\n", 'user-1')
        second = parser.parse_csv("date,symbol,amount\n2024-01-01,ETH,2\n", 'user-1')

        assert first.transactions[0].symbol == 'SOL'
        assert second.transactions[0].symbol == 'ETH'
        assert not hasattr(parser, 'delimiter')

    def test_non_positive_amount_is_row_error(self, parser):
        content = "date,symbol,amount\n2024-01-01,BTC,0\n2024-01-02,BTC,1\n"
        result = parser.parse_csv(content, 'user-1')
        assert result.valid_rows == 1
        assert result.errors[0].row == 1
        assert result.errors[0].field == 'amount'
        assert result.errors[0].severity == Severity.ERROR

    def test_future_transaction_is_kept_with_warning(self, parser):
        future = (datetime.now(timezone.utc) + timedelta(days=30)).strftime('%Y-%m-%d')
        content = f"date,symbol,amount\n{future},BTC,1\n"
        result = parser.parse_csv(content, 'user-1')
        assert result.valid_rows == 1
        assert not result.errors
        assert result.warnings[0].field == 'timestamp'
        assert result.warnings[0].severity == Severity.WARNING

    def test_all_rows_failing_is_batch_failure(self, parser):
        content = "date,symbol,amount\nbad,BTC,1\n2024-01-01,BTC,x\n"
        result = parser.parse_csv(content, 'user-1')
        assert result.valid_rows == 0
        assert result.total_rows == 2
        assert result.status == ProcessingStatus.FAILED

    def test_missing_mandatory_generic_columns_rejects_each_row(self, parser):
        content = "when,what\n2024-01-01,BTC\n2024-01-02,ETH\n"
        result = parser.parse_csv(content, 'user-1')
        assert result.valid_rows == 0
        assert len(result.errors) == 2
        assert "Required columns not found" in result.errors[0].message

    def test_in_file_duplicates_are_counted_not_dropped(self, parser):
        content = "date,symbol,amount,type\n2024-01-01,BTC,1,buy\n2024-01-01,BTC,1,buy\n"
        result = parser.parse_csv(content, 'user-1')
        assert result.valid_rows == 2
        assert result.duplicates == 1
        assert any("row 1" in w.message for w in result.warnings)

    def test_exchange_hint_overrides_detection(self, parser):
        content = "date,symbol,amount\n2024-01-01,BTC,1\n"
        result = parser.parse_csv(content, 'user-1', exchange=ExchangeType.KRAKEN)
        assert result.valid_rows == 0
        assert result.errors

    def test_semicolon_delimiter(self, parser):
        content = "date;symbol;amount\n2024-01-01;SOL;3\n"
        result = parser.parse_csv(content, 'user-1')
        assert result.transactions[0].symbol == 'SOL'
        assert result.transactions[0].amount == Decimal('3')

    def test_header_only_file_is_file_error(self, parser):
        result = parser.parse_csv("date,symbol,amount\n", 'user-1')
        assert result.valid_rows == 0
        assert result.errors[0].row == 0

    def test_empty_content(self, parser):
        result = parser.parse_csv("", 'user-1')
        assert result.status == ProcessingStatus.FAILED
        assert result.errors[0].field == 'file'

    def test_valid_rows_matches_transactions(self, parser):
        result = parser.parse_csv(BINANCE_SPOT_CSV, 'user-1')
        assert result.valid_rows == len(result.transactions)
        assert result.total_rows >= result.valid_rows
