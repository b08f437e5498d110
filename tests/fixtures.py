"""Deterministic bars and in-memory fakes shared by the test suites."""

from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from crypto_trading.data.market_data import MarketDataSource, PriceBar
from crypto_trading.exceptions import GatewayError
from crypto_trading.features.feature_engine import FeatureVector
from crypto_trading.ml.ensemble import PredictionResult
from crypto_trading.monitoring.ledger import Ledger

HOUR_MS = 60 * 60 * 1000


def make_bars(closes: Sequence[float], spread: float = 0.005, volume: float = 1000.0,
              start_ms: int = 1_700_000_000_000, interval_ms: int = HOUR_MS) -> List[PriceBar]:
    """Bars opening at the previous close, with a fixed relative wick."""
    bars = []
    prev = closes[0]
    for i, close in enumerate(closes):
        open_price = prev
        bars.append(PriceBar(
            timestamp=start_ms + i * interval_ms,
            open=float(open_price),
            high=float(max(open_price, close) * (1 + spread)),
            low=float(min(open_price, close) * (1 - spread)),
            close=float(close),
            volume=float(volume + (i % 7) * 10),
        ))
        prev = close
    return bars


def bar(open_price: float, high: float, low: float, close: float, ts: int = 0) -> PriceBar:
    return PriceBar(timestamp=ts, open=open_price, high=high, low=low, close=close, volume=100.0)


def random_walk_closes(n: int, seed: int = 7, start: float = 100.0, vol: float = 0.01) -> List[float]:
    rng = np.random.RandomState(seed)
    return list(start * np.cumprod(1 + rng.normal(0, vol, n)))


def make_feature_vector(**overrides) -> FeatureVector:
    """A feature vector on which no indicator rule fires."""
    values = dict(
        timestamp=0, open=100.0, high=101.0, low=99.0, close=100.0, volume=1000.0,
        returns=0.0, log_returns=0.0,
        sma_20=100.0, sma_50=100.0, sma_200=100.0, ema_9=100.0, ema_21=100.0, ema_50=100.0,
        rsi_14=50.0, macd=0.0, macd_signal=0.0, macd_histogram=0.0, stoch_k=50.0, stoch_d=50.0,
        atr_14=1.0, bb_upper=102.0, bb_middle=100.0, bb_lower=98.0, bb_width=4.0,
        adx_14=10.0, price_slope=0.0, volume_slope=0.0, high_low_range=2.0, close_open_diff=0.0,
        is_doji=False, is_hammer=False, is_engulfing=False,
        higher_tf_trend=None, lower_tf_volatility=None,
    )
    values.update(overrides)
    return FeatureVector(**values)


def make_prediction(price: float, confidence: float = 0.8, timeframe: str = "1h") -> PredictionResult:
    return PredictionResult(
        predicted_price=price,
        confidence=confidence,
        timestamp=0,
        closes_at=HOUR_MS,
        timeframe=timeframe,
    )


class StaticMarketData(MarketDataSource):
    """Serves fixed bars; prices can be moved by tests."""

    def __init__(self, bars: Dict[str, List[PriceBar]], failing: Iterable[str] = ()):
        self.bars = bars
        self.prices: Dict[str, float] = {i: b[-1].close for i, b in bars.items()}
        self.failing = set(failing)

    def fetch_bars(self, instrument, timeframe, limit):
        if instrument in self.failing:
            raise GatewayError(f"{instrument} unavailable")
        return self.bars[instrument][-limit:]

    def fetch_current_price(self, instrument):
        if instrument in self.failing:
            raise GatewayError(f"{instrument} unavailable")
        return self.prices[instrument]


class FailingLedger(Ledger):
    """Rejects every write."""

    def record_prediction(self, record):
        raise IOError("disk full")

    def record_trade(self, record):
        raise IOError("disk full")


class FakeExchangeClient:
    """Stands in for a ccxt exchange object."""

    def __init__(self, ohlcv: Optional[list] = None, last: float = 50000.0, error: Exception = None,
                 report_fill: bool = True):
        self.ohlcv = ohlcv or []
        self.last = last
        self.error = error
        self.report_fill = report_fill
        self.orders = []

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    def fetch_ohlcv(self, symbol, timeframe, since=None, limit=None):
        self._maybe_fail()
        return self.ohlcv[-limit:] if limit else self.ohlcv

    def fetch_ticker(self, symbol):
        self._maybe_fail()
        return {'symbol': symbol, 'last': self.last, 'close': self.last}

    def fetch_markets(self):
        self._maybe_fail()
        return [
            {'symbol': 'BTC/USDT', 'active': True, 'spot': True},
            {'symbol': 'ETH/USDT', 'active': False, 'spot': True},
            {'symbol': 'BTC/USDT:USDT', 'active': True, 'spot': False},
        ]

    def fetch_balance(self):
        self._maybe_fail()
        return {'free': {'USDT': 1500.0, 'BTC': 0.25, 'ETH': 0.0}}

    def create_order(self, symbol, order_type, side, amount, price=None):
        self._maybe_fail()
        self.orders.append((symbol, order_type, side, amount, price))
        if not self.report_fill:
            return {'id': f"ord-{len(self.orders)}", 'average': None, 'price': None, 'filled': None}
        return {
            'id': f"ord-{len(self.orders)}",
            'average': self.last,
            'filled': amount,
            'cost': amount * self.last,
            'status': 'closed',
            'timestamp': 1_700_000_000_000,
        }
