"""
Market data collaborator - CoinGecko free API, no key required.

Prices are returned as Decimal. ``None`` means unknown: callers must never
treat a missing price as a zero valuation. Live quotes are cached per
symbol for a short TTL; when CoinGecko is unreachable the last known quote
is served instead.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

import requests

from core.settings import EngineSettings, get_settings
from services.market_cache import PriceCache
from utils.logging_config import get_perf_logger, setup_logger

logger = setup_logger(__name__)

# Ticker to CoinGecko ID mapping; unknown tickers fall back to the lowercase symbol
CRYPTO_ID_MAP: Dict[str, str] = {
    'BTC': 'bitcoin',
    'ETH': 'ethereum',
    'ADA': 'cardano',
    'DOT': 'polkadot',
    'SOL': 'solana',
    'LINK': 'chainlink',
    'UNI': 'uniswap',
    'MATIC': 'matic-network',
    'AVAX': 'avalanche-2',
    'ATOM': 'cosmos',
    'NEAR': 'near',
    'FTM': 'fantom',
    'ALGO': 'algorand',
    'XRP': 'ripple',
    'LTC': 'litecoin',
    'BCH': 'bitcoin-cash',
    'XLM': 'stellar',
    'VET': 'vechain',
    'ICP': 'internet-computer',
    'THETA': 'theta-token',
    'FIL': 'filecoin',
    'TRX': 'tron',
    'ETC': 'ethereum-classic',
    'XMR': 'monero',
    'CAKE': 'pancakeswap-token',
    'AAVE': 'aave',
    'GRT': 'the-graph',
    'SUSHI': 'sushi',
    'CRV': 'curve-dao-token',
    'COMP': 'compound-governance-token',
    'YFI': 'yearn-finance',
    'SNX': 'havven',
    'MKR': 'maker',
    'USDT': 'tether',
    'USDC': 'usd-coin',
    'BUSD': 'binance-usd',
    'DAI': 'dai',
    'BNB': 'binancecoin',
    'DOGE': 'dogecoin',
}


def get_coin_id(symbol: str) -> str:
    symbol = symbol.upper().strip()
    return CRYPTO_ID_MAP.get(symbol, symbol.lower())


def to_price(value) -> Optional[Decimal]:
    """JSON number -> Decimal; null, zero, negative and garbage are unknown."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


@dataclass
class CoinPrice:
    symbol: str
    price: Optional[Decimal]
    change_24h: Optional[Decimal] = None
    last_updated: Optional[datetime] = None
    stale: bool = False


class MarketDataProvider(ABC):
    """Price source consumed by the portfolio and tax services."""

    @abstractmethod
    def get_current_prices(self, symbols: Iterable[str]) -> List[CoinPrice]:
        pass

    @abstractmethod
    def get_price_at_timestamp(self, symbol: str, instant: datetime) -> Optional[Decimal]:
        pass


class MarketDataService(MarketDataProvider):
    """CoinGecko-backed prices in USD."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        session: Optional[requests.Session] = None,
        cache: Optional[PriceCache] = None,
        history_cache: Optional[PriceCache] = None,
    ):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        self.base_url = self.settings.coingecko_base_url.rstrip('/')
        self.timeout = self.settings.request_timeout_seconds
        self.cache = cache or PriceCache(ttl_seconds=self.settings.price_cache_ttl_seconds)
        # Historical quotes do not change
        self.history_cache = history_cache or PriceCache(ttl_seconds=None)

    def _get_json(self, path: str, params: Dict[str, str]):
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_current_prices(self, symbols: Iterable[str]) -> List[CoinPrice]:
        """
        Current USD prices for ``symbols`` in one batched request.

        Fresh cache hits skip the network. If the request fails, each missing
        symbol gets its last cached quote (``stale=True``) or an unknown price.
        """
        wanted = list(dict.fromkeys(s.upper().strip() for s in symbols if s and s.strip()))
        results: Dict[str, CoinPrice] = {}
        missing: List[str] = []

        for symbol in wanted:
            cached = self.cache.get(symbol)
            if cached is not None:
                results[symbol] = cached
            else:
                missing.append(symbol)

        if missing:
            results.update(self._fetch_current(missing))

        return [results[s] for s in wanted]

    def _fetch_current(self, symbols: List[str]) -> Dict[str, CoinPrice]:
        ids = {symbol: get_coin_id(symbol) for symbol in symbols}
        params = {
            'ids': ','.join(sorted(set(ids.values()))),
            'vs_currencies': 'usd',
            'include_24hr_change': 'true',
        }

        try:
            with get_perf_logger(logger, f"fetch {len(symbols)} prices", threshold_ms=3000):
                data = self._get_json("/simple/price", params)
        except requests.exceptions.Timeout:
            logger.error(f"Timeout fetching prices for {symbols} from CoinGecko")
            return self._fallback(symbols)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error fetching prices for {symbols} from CoinGecko: {e}")
            return self._fallback(symbols)

        now = datetime.now(timezone.utc)
        results: Dict[str, CoinPrice] = {}
        for symbol, coin_id in ids.items():
            quote = data.get(coin_id) if isinstance(data, dict) else None
            quote = quote if isinstance(quote, dict) else {}
            price = to_price(quote.get('usd'))
            change = quote.get('usd_24h_change')
            coin_price = CoinPrice(
                symbol=symbol,
                price=price,
                change_24h=Decimal(str(change)) if isinstance(change, (int, float)) and not isinstance(change, bool) else None,
                last_updated=now,
            )
            if price is None:
                logger.warning(f"No price for {symbol} ({coin_id})")
                stale = self.cache.get_stale(symbol)
                if stale is not None:
                    coin_price = CoinPrice(stale.symbol, stale.price, stale.change_24h, stale.last_updated, stale=True)
            else:
                self.cache.set(symbol, coin_price)
            results[symbol] = coin_price
        return results

    def _fallback(self, symbols: List[str]) -> Dict[str, CoinPrice]:
        results = {}
        for symbol in symbols:
            stale = self.cache.get_stale(symbol)
            if stale is not None:
                logger.info(f"Serving last known price for {symbol} from {stale.last_updated}")
                results[symbol] = CoinPrice(stale.symbol, stale.price, stale.change_24h, stale.last_updated, stale=True)
            else:
                results[symbol] = CoinPrice(symbol=symbol, price=None)
        return results

    def get_price_map(self, symbols: Iterable[str]) -> Dict[str, Optional[Decimal]]:
        return {p.symbol: p.price for p in self.get_current_prices(symbols)}

    def get_price_at_timestamp(self, symbol: str, instant: datetime) -> Optional[Decimal]:
        """
        Daily USD price of ``symbol`` on the UTC date of ``instant``.

        Returns None when CoinGecko has no quote or cannot be reached.
        """
        symbol = symbol.upper().strip()
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        day = instant.astimezone(timezone.utc).strftime('%d-%m-%Y')
        cache_key = f"{symbol}:{day}"

        cached = self.history_cache.get(cache_key)
        if cached is not None:
            return cached

        coin_id = get_coin_id(symbol)
        try:
            data = self._get_json(f"/coins/{coin_id}/history", {'date': day, 'localization': 'false'})
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error fetching historical price for {symbol} on {day}: {e}")
            return None

        market_data = data.get('market_data') if isinstance(data, dict) else None
        current = market_data.get('current_price') if isinstance(market_data, dict) else None
        price = to_price(current.get('usd')) if isinstance(current, dict) else None

        if price is None:
            logger.warning(f"No historical price for {symbol} on {day}")
            return None

        self.history_cache.set(cache_key, price)
        return price
