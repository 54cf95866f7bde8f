"""Holdings reconstruction (weighted-average cost basis) and portfolio valuation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

import numpy as np

from calculators.tax_events import CalculationWarning
from parsers.transaction import Transaction, TransactionType
from utils.logging_config import get_perf_logger, setup_logger

logger = setup_logger(__name__)

ZERO = Decimal(0)
HUNDRED = Decimal(100)

COIN_NAMES: Dict[str, str] = {
    'BTC': 'Bitcoin',
    'ETH': 'Ethereum',
    'ADA': 'Cardano',
    'DOT': 'Polkadot',
    'SOL': 'Solana',
    'LINK': 'Chainlink',
    'UNI': 'Uniswap',
    'MATIC': 'Polygon',
    'AVAX': 'Avalanche',
    'ATOM': 'Cosmos',
    'XRP': 'XRP',
    'LTC': 'Litecoin',
    'BNB': 'BNB',
    'DOGE': 'Dogecoin',
    'USDT': 'Tether',
    'USDC': 'USD Coin',
    'BUSD': 'Binance USD',
    'DAI': 'Dai',
}


def get_coin_name(symbol: str) -> str:
    return COIN_NAMES.get(symbol.upper(), symbol.upper())


@dataclass
class HoldingState:
    """Running cost-basis state for one symbol."""
    symbol: str
    amount: Decimal = ZERO
    total_invested: Decimal = ZERO
    average_cost_basis: Decimal = ZERO
    realized_gain_loss: Decimal = ZERO
    transaction_count: int = 0

    def recompute_average(self):
        if self.amount > 0:
            self.average_cost_basis = self.total_invested / self.amount


@dataclass
class Holding:
    """A valued position as shown on a dashboard."""
    symbol: str
    name: str
    amount: Decimal
    total_invested: Decimal
    average_cost_basis: Decimal
    realized_gain_loss: Decimal
    current_price: Decimal
    current_value: Decimal
    unrealized_gain_loss: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    allocation: Decimal = ZERO
    price_source: str = "market"
    change_24h: Optional[Decimal] = None


@dataclass
class UserPortfolio:
    user_id: str
    holdings: List[Holding]
    total_value: Decimal
    total_invested: Decimal
    total_gains: Decimal
    total_gains_percent: Decimal
    realized_gain_loss: Decimal
    last_updated: datetime
    warnings: List[CalculationWarning] = field(default_factory=list)


@dataclass
class PortfolioMetrics:
    total_return: Decimal
    total_return_percent: Decimal
    best_performer: Optional[str]
    worst_performer: Optional[str]
    volatility: Decimal


class Portfolio:
    """
    Replays a user's transactions in timestamp order and keeps one
    ``HoldingState`` per symbol. State is rebuilt from scratch on every
    construction; there is no incremental update path.
    """

    def __init__(self, transactions: List[Transaction]):
        # sorted() is stable: equal timestamps keep insertion order
        self.transactions = sorted(transactions, key=lambda t: t.timestamp)
        self.holdings: Dict[str, HoldingState] = {}
        self.warnings: List[CalculationWarning] = []

        self._reconstruct_state()

    def _reconstruct_state(self):
        with get_perf_logger(logger, f"replay {len(self.transactions)} transactions", threshold_ms=1000):
            for t in self.transactions:
                self.process_transaction(t)

    def _warn(self, t: Transaction, message: str):
        logger.warning(f"{t.symbol}: {message} (transaction {t.id})")
        self.warnings.append(CalculationWarning(symbol=t.symbol, transaction_id=t.id, message=message))

    def process_transaction(self, t: Transaction):
        """Apply one transaction to the running state of its symbol."""
        state = self.holdings.get(t.symbol)
        if state is None:
            state = HoldingState(symbol=t.symbol)
            self.holdings[t.symbol] = state
        state.transaction_count += 1

        if t.type == TransactionType.BUY or (t.type == TransactionType.TRADE and t.amount > 0):
            state.total_invested += t.amount * t.price + t.fee
            state.amount += t.amount

        elif t.type == TransactionType.SELL or (t.type == TransactionType.TRADE and t.amount < 0):
            self._process_sell(state, t, abs(t.amount))

        elif t.type.is_income:
            # Income at fair market value; unpriced income enters at zero cost
            state.total_invested += t.amount * t.price
            state.amount += t.amount

        elif t.type == TransactionType.TRANSFER_IN:
            cost = t.amount * t.price if t.price > 0 else t.total_value
            state.total_invested += cost
            state.amount += t.amount

        elif t.type == TransactionType.TRANSFER_OUT:
            self._process_transfer_out(state, t)

        state.recompute_average()

    def _remove_at_cost(self, state: HoldingState, t: Transaction, requested: Decimal) -> Optional[Decimal]:
        """
        Take up to ``requested`` units out at average cost.

        Returns the cost basis removed, or None when nothing was held.
        """
        if state.amount <= 0:
            self._warn(t, f"{t.type.value} of {requested} with no holdings; skipped")
            return None

        removed = min(requested, state.amount)
        if requested > state.amount:
            self._warn(
                t,
                f"Oversell: requested {requested}, held {state.amount}; "
                f"processed {removed}, shortfall {requested - state.amount}"
            )

        cost_basis = removed * state.average_cost_basis
        state.amount -= removed
        state.total_invested = max(ZERO, state.total_invested - cost_basis)
        return cost_basis

    def _process_sell(self, state: HoldingState, t: Transaction, requested: Decimal):
        if requested <= 0:
            return

        sold = min(requested, state.amount) if state.amount > 0 else ZERO
        cost_basis = self._remove_at_cost(state, t, requested)
        if cost_basis is None:
            return

        if t.price <= 0:
            self._warn(t, "Sell without a known price; removed at cost, no gain realized")
            return

        proceeds = sold * t.price - t.fee
        state.realized_gain_loss += proceeds - cost_basis

    def _process_transfer_out(self, state: HoldingState, t: Transaction):
        if t.amount <= 0:
            return
        # Not a realization event: the cost basis leaves with the coins
        self._remove_at_cost(state, t, t.amount)

    def get_holdings(self) -> Dict[str, HoldingState]:
        return self.holdings

    def total_realized_gain_loss(self) -> Decimal:
        return sum((s.realized_gain_loss for s in self.holdings.values()), ZERO)

    def value(
        self,
        user_id: str,
        prices: Mapping[str, Optional[Decimal]],
        changes_24h: Optional[Mapping[str, Optional[Decimal]]] = None,
        as_of: Optional[datetime] = None,
    ) -> UserPortfolio:
        """
        Join holdings with current prices.

        Symbols with an unknown (missing, None or zero) price are valued at
        their average cost basis and flagged ``price_source="cost_basis"``.
        """
        changes_24h = changes_24h or {}
        warnings = list(self.warnings)
        holdings: List[Holding] = []

        for symbol, state in self.holdings.items():
            if state.amount <= 0:
                continue

            price = prices.get(symbol)
            price_source = "market"
            if price is None or price <= 0:
                price = state.average_cost_basis
                price_source = "cost_basis"
                warnings.append(CalculationWarning(
                    symbol=symbol,
                    transaction_id=None,
                    message="No current price available; valued at average cost basis",
                ))

            current_value = state.amount * price
            unrealized = current_value - state.total_invested
            gain_loss = unrealized + state.realized_gain_loss
            gain_loss_percent = (gain_loss / state.total_invested * HUNDRED) if state.total_invested > 0 else ZERO

            holdings.append(Holding(
                symbol=symbol,
                name=get_coin_name(symbol),
                amount=state.amount,
                total_invested=state.total_invested,
                average_cost_basis=state.average_cost_basis,
                realized_gain_loss=state.realized_gain_loss,
                current_price=price,
                current_value=current_value,
                unrealized_gain_loss=unrealized,
                gain_loss=gain_loss,
                gain_loss_percent=gain_loss_percent,
                price_source=price_source,
                change_24h=changes_24h.get(symbol),
            ))

        total_value = sum((h.current_value for h in holdings), ZERO)
        total_invested = sum((h.total_invested for h in holdings), ZERO)
        realized = self.total_realized_gain_loss()

        for h in holdings:
            h.allocation = (h.current_value / total_value * HUNDRED) if total_value > 0 else ZERO
        holdings.sort(key=lambda h: h.current_value, reverse=True)

        total_gains = (total_value - total_invested) + realized
        total_gains_percent = (total_gains / total_invested * HUNDRED) if total_invested > 0 else ZERO

        return UserPortfolio(
            user_id=user_id,
            holdings=holdings,
            total_value=total_value,
            total_invested=total_invested,
            total_gains=total_gains,
            total_gains_percent=total_gains_percent,
            realized_gain_loss=realized,
            last_updated=as_of or datetime.now(timezone.utc),
            warnings=warnings,
        )


def calculate_holdings(transactions: List[Transaction]) -> Dict[str, HoldingState]:
    """Replay ``transactions`` and return per-symbol state (including zero-amount symbols)."""
    return Portfolio(transactions).get_holdings()


def calculate_portfolio_metrics(portfolio: UserPortfolio) -> PortfolioMetrics:
    """Summary figures: total return, best/worst performer, spread of holding returns."""
    if not portfolio.holdings:
        return PortfolioMetrics(
            total_return=portfolio.total_gains,
            total_return_percent=portfolio.total_gains_percent,
            best_performer=None,
            worst_performer=None,
            volatility=ZERO,
        )

    best = max(portfolio.holdings, key=lambda h: h.gain_loss_percent)
    worst = min(portfolio.holdings, key=lambda h: h.gain_loss_percent)
    returns = np.array([h.gain_loss_percent for h in portfolio.holdings], dtype=float)
    # Population std (ddof=0) of per-holding returns
    volatility = Decimal(str(np.std(returns))) if len(returns) > 1 else ZERO

    return PortfolioMetrics(
        total_return=portfolio.total_gains,
        total_return_percent=portfolio.total_gains_percent,
        best_performer=best.symbol,
        worst_performer=worst.symbol,
        volatility=volatility,
    )
