"""
Tests for log formatting, run context and timing helpers.
"""

import logging

import pandas as pd
import pytest

from parsers.transaction import ExchangeType
from utils import logging_config
from utils.logging_config import (
    IngestFormatter,
    format_context,
    get_perf_logger,
    ingest_context,
    log_dataframe_info,
)


@pytest.fixture
def plain_logger(caplog):
    caplog.set_level(logging.DEBUG, logger='tests.logging')
    return logging.getLogger('tests.logging')


def test_context_drops_missing_values_and_unwraps_enums():
    extra = ingest_context(user='user-1', exchange=ExchangeType.KRAKEN, year=None)
    assert extra == {'ingest': {'user': 'user-1', 'exchange': 'kraken'}}


def test_known_keys_render_first():
    context = {'symbol': 'BTC', 'zeta': 1, 'file': 'a.csv', 'user': 'user-1', 'alpha': 2}
    assert format_context(context) == 'user=user-1 file=a.csv symbol=BTC alpha=2 zeta=1'


def test_formatter_appends_context():
    record = logging.makeLogRecord({
        'msg': 'Parsing trades.csv',
        'levelname': 'INFO',
        **ingest_context(user='user-1', file='trades.csv'),
    })
    line = IngestFormatter().format(record)

    assert line.startswith('[')
    assert '[INFO    ]' in line
    assert line.endswith('Parsing trades.csv | user=user-1 file=trades.csv')


def test_formatter_without_context():
    record = logging.makeLogRecord({'msg': 'plain', 'levelname': 'DEBUG'})
    assert IngestFormatter().format(record).endswith('] plain')


class TestPerformanceLogger:

    @pytest.fixture
    def half_second(self, monkeypatch):
        ticks = iter([1.0, 1.5])
        monkeypatch.setattr(logging_config.time, 'perf_counter', lambda: next(ticks))

    def test_throughput_reported(self, plain_logger, caplog, half_second):
        with get_perf_logger(plain_logger, 'map rows', threshold_ms=10_000, rows=50) as perf:
            pass

        assert perf.duration_ms == pytest.approx(500.0)
        assert caplog.records[-1].levelno == logging.DEBUG
        assert caplog.records[-1].getMessage() == 'map rows took 500.0ms (50 rows, 100 rows/s)'

    def test_slow_block_is_warning(self, plain_logger, caplog, half_second):
        with get_perf_logger(plain_logger, 'lot replay', threshold_ms=100):
            pass

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].getMessage() == 'SLOW: lot replay took 500.0ms'

    def test_exception_propagates(self, plain_logger, caplog, half_second):
        with pytest.raises(KeyError):
            with get_perf_logger(plain_logger, 'lookup'):
                raise KeyError('BTC')

        assert 'aborted' in caplog.records[-1].getMessage()
        assert 'KeyError' in caplog.records[-1].getMessage()


def test_dataset_info_flags_repeated_headers(plain_logger, caplog):
    df = pd.DataFrame([['1', '2', '2024-01-01']], columns=['Fee', 'Fee.1', 'Date'])
    log_dataframe_info(plain_logger, df, name='CSV dataset')

    messages = [r.getMessage() for r in caplog.records]
    assert messages[0] == "CSV dataset: 1 rows x 3 columns ['Fee', 'Fee.1', 'Date']"
    assert messages[1] == "CSV dataset repeats column names: ['Fee.1']"


def test_dataset_info_plain_headers(plain_logger, caplog):
    log_dataframe_info(plain_logger, pd.DataFrame(columns=['Date(UTC+0)', 'Coin']))
    assert all(r.levelno == logging.INFO for r in caplog.records)
