"""
Market Data Module
==================
Price bars, the market data source interface and an offline synthetic source.
"""

import pandas as pd
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence
import logging
import zlib

logger = logging.getLogger(__name__)


# Timeframe durations in milliseconds
TIMEFRAME_MS: Dict[str, int] = {
    '1m': 60 * 1000,
    '5m': 5 * 60 * 1000,
    '15m': 15 * 60 * 1000,
    '30m': 30 * 60 * 1000,
    '1h': 60 * 60 * 1000,
    '4h': 4 * 60 * 60 * 1000,
    '1d': 24 * 60 * 60 * 1000,
}


def timeframe_to_ms(timeframe: str) -> int:
    """Duration of one bar; unknown timeframes count as one minute."""
    return TIMEFRAME_MS.get(timeframe, TIMEFRAME_MS['1m'])


@dataclass(frozen=True)
class PriceBar:
    """One OHLCV observation."""
    timestamp: int  # Bar open time, epoch milliseconds
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume
        }


def bars_to_frame(bars: Sequence[PriceBar]) -> pd.DataFrame:
    """Convert bars to an OHLCV DataFrame indexed by bar timestamp."""
    df = pd.DataFrame(
        [bar.to_dict() for bar in bars],
        columns=['timestamp', 'open', 'high', 'low', 'close', 'volume']
    )
    return df.set_index('timestamp').astype(float)


class MarketDataSource(ABC):
    """Abstract source of bars and prices."""

    @abstractmethod
    def fetch_bars(self, instrument: str, timeframe: str, limit: int) -> List[PriceBar]:
        """Fetch the latest `limit` bars, oldest first."""
        pass

    @abstractmethod
    def fetch_current_price(self, instrument: str) -> float:
        """Fetch the last traded price."""
        pass


class SyntheticMarketData(MarketDataSource):
    """
    Random-walk market data for paper trading without network access.

    Each (instrument, timeframe) series is seeded from its name, so repeated
    fetches are reproducible; the walk advances by one bar per fetch.
    """

    def __init__(self, volatility: float = 0.01, seed: int = 42):
        self.volatility = volatility
        self.seed = seed
        self.base_prices = {
            'BTC': 60000,
            'ETH': 3000,
            'SOL': 150,
            'XRP': 0.6,
            'DOGE': 0.15
        }
        self._fetch_counts: Dict[str, int] = {}
        self._last_prices: Dict[str, float] = {}

    def fetch_bars(self, instrument: str, timeframe: str, limit: int) -> List[PriceBar]:
        """Generate synthetic OHLCV bars."""
        key = f"{instrument}:{timeframe}"
        offset = self._fetch_counts.get(key, 0)
        self._fetch_counts[key] = offset + 1

        rng = np.random.RandomState((zlib.crc32(key.encode()) + self.seed) % (2 ** 32))
        total = limit + offset
        step_vol = self.volatility * np.sqrt(timeframe_to_ms(timeframe) / TIMEFRAME_MS['1h'])

        returns = rng.normal(0.0001, step_vol, total)
        base_price = self.base_prices.get(instrument.split('/')[0], 100)
        closes = base_price * np.cumprod(1 + returns)

        interval = timeframe_to_ms(timeframe)
        now_ms = int(datetime.now().timestamp() * 1000)
        start_ms = now_ms - now_ms % interval - (total - 1) * interval

        bars = []
        prev_close = base_price
        for i, close in enumerate(closes):
            spread = abs(rng.normal(0, step_vol * close))
            open_price = prev_close
            high = max(open_price, close) + spread
            low = min(open_price, close) - spread
            volume = max(rng.normal(1000, 200), 10)

            bars.append(PriceBar(
                timestamp=start_ms + i * interval,
                open=float(open_price),
                high=float(high),
                low=float(max(low, close * 0.5)),
                close=float(close),
                volume=float(volume)
            ))
            prev_close = close

        bars = bars[-limit:]
        self._last_prices[instrument] = bars[-1].close
        return bars

    def fetch_current_price(self, instrument: str) -> float:
        """Last synthetic close, or the base price before any fetch."""
        if instrument in self._last_prices:
            return self._last_prices[instrument]
        return float(self.base_prices.get(instrument.split('/')[0], 100))
