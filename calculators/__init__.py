"""
Calculators Package

Deterministic replays over a user's transaction history.

Modules:
- portfolio: Weighted-average holdings and valuation
- tax_basis: Lot matching (FIFO, average cost) and yearly tax summary
- duplicate_detector: Re-import detection against stored history
"""

__all__ = ['portfolio', 'tax_basis', 'tax_events', 'duplicate_detector']
