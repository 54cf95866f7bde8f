"""Shared fixtures for the engine tests."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.settings import EngineSettings
from parsers.transaction import Transaction, TransactionType

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def make_transaction():
    """Factory: make_transaction('buy', 'BTC', '1', '100', day=3, fee='1')."""
    def _make(tx_type, symbol, amount, price='0', day=0, fee='0', total=None, user_id='user-1', **extra):
        amount = Decimal(str(amount))
        price = Decimal(str(price))
        return Transaction(
            user_id=user_id,
            timestamp=BASE_TIME + timedelta(days=day),
            type=TransactionType(tx_type),
            symbol=symbol,
            amount=amount,
            price=price,
            fee=Decimal(str(fee)),
            total_value=Decimal(str(total)) if total is not None else amount * price,
            **extra,
        )
    return _make
