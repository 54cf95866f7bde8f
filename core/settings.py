"""
Engine Settings

Tunable assumptions of the ingestion and accounting engine. Defaults are
usable as-is; every field can be overridden through an environment variable
(see ``ENV_OVERRIDES``) or by constructing ``EngineSettings`` directly and
passing it to the parser or services.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import os
from decimal import Decimal
from functools import lru_cache
from typing import Dict, Tuple

from pydantic import BaseModel, Field, field_validator


# Environment variable -> settings field
ENV_OVERRIDES: Dict[str, str] = {
    'PRICE_CACHE_TTL': 'price_cache_ttl_seconds',
    'COINGECKO_BASE_URL': 'coingecko_base_url',
    'MARKET_DATA_TIMEOUT': 'request_timeout_seconds',
    'ASSUME_STABLECOIN_PEG': 'assume_stablecoin_peg',
    'STABLECOIN_SYMBOLS': 'stablecoin_symbols',
    'STABLECOIN_PEG_PRICE': 'stablecoin_peg_price',
    'SHORT_TERM_TAX_RATE': 'short_term_tax_rate',
    'LONG_TERM_TAX_RATE': 'long_term_tax_rate',
    'LONG_TERM_THRESHOLD_DAYS': 'long_term_threshold_days',
}


class EngineSettings(BaseModel):
    """Configuration shared by parsers, calculators and services."""

    model_config = {'frozen': True}

    # Market data
    price_cache_ttl_seconds: float = 60.0
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    request_timeout_seconds: float = 10.0

    # Deposits/withdrawals of pegged coins carry no quoted price in exchange
    # exports. When enabled they are booked at stablecoin_peg_price.
    assume_stablecoin_peg: bool = True
    stablecoin_symbols: Tuple[str, ...] = ('USDT', 'USDC', 'BUSD')
    stablecoin_peg_price: Decimal = Decimal("1")

    # Illustrative flat rates; real rate tables are a deployment concern
    short_term_tax_rate: Decimal = Decimal("0.37")
    long_term_tax_rate: Decimal = Decimal("0.20")
    long_term_threshold_days: int = Field(default=365, ge=0)

    @field_validator('stablecoin_symbols', mode='before')
    @classmethod
    def split_symbols(cls, v):
        if isinstance(v, str):
            v = [part for part in v.split(',') if part.strip()]
        return tuple(str(part).strip().upper() for part in v)

    @field_validator('short_term_tax_rate', 'long_term_tax_rate')
    @classmethod
    def rate_in_range(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError(f"Tax rate must be between 0 and 1, got {v}")
        return v

    def stablecoin_price(self, symbol: str) -> Decimal:
        """Price assumed for a deposit/withdrawal of ``symbol`` (0 = unknown)."""
        if self.assume_stablecoin_peg and symbol.upper() in self.stablecoin_symbols:
            return self.stablecoin_peg_price
        return Decimal(0)

    @classmethod
    def from_env(cls) -> 'EngineSettings':
        """Build settings from defaults plus any environment overrides."""
        values = {}
        for env_name, field_name in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw.strip() == "":
                continue
            if field_name == 'assume_stablecoin_peg':
                values[field_name] = raw.strip().lower() in ('1', 'true', 'yes', 'on')
            else:
                values[field_name] = raw.strip()
        return cls(**values)


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Process-wide settings, read from the environment once."""
    return EngineSettings.from_env()
