"""
Data Module
===========
"""
from .market_data import (
    PriceBar,
    MarketDataSource,
    SyntheticMarketData,
    bars_to_frame,
    timeframe_to_ms,
    TIMEFRAME_MS
)

__all__ = [
    'PriceBar',
    'MarketDataSource',
    'SyntheticMarketData',
    'bars_to_frame',
    'timeframe_to_ms',
    'TIMEFRAME_MS'
]
