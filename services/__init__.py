"""
Services Package

Market data, storage contract and the import/valuation pipeline.

Copyright (c) 2026 Andre. All rights reserved.
"""

__all__ = ['market_data', 'market_cache', 'transaction_store', 'pipeline']
