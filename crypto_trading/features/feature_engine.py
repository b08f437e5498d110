"""
Feature Engineering Module
==========================
Technical indicators and per-bar feature vectors for the forecaster.
"""

import pandas as pd
import numpy as np
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass, asdict
import logging

from ..data.market_data import PriceBar, bars_to_frame
from ..exceptions import InsufficientDataError
from ..patterns.pattern_detector import PatternDetector

logger = logging.getLogger(__name__)


# Column order of the normalized feature matrix
NORMALIZED_COLUMNS = [
    'returns', 'log_returns', 'rsi', 'macd', 'macd_histogram', 'stoch_k',
    'atr', 'bb_width', 'adx', 'price_slope', 'volume_slope', 'high_low_range',
    'close_open_diff', 'is_doji', 'is_hammer', 'is_engulfing',
    'higher_tf_trend', 'lower_tf_volatility'
]


@dataclass
class FeatureVector:
    """Indicator snapshot for one bar."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    # Returns
    returns: float  # Percent
    log_returns: float

    # Moving averages
    sma_20: float
    sma_50: float
    sma_200: float
    ema_9: float
    ema_21: float
    ema_50: float

    # Momentum
    rsi_14: float
    macd: float
    macd_signal: float
    macd_histogram: float
    stoch_k: float
    stoch_d: float

    # Volatility
    atr_14: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    bb_width: float

    # Trend
    adx_14: float

    # Derivatives
    price_slope: float
    volume_slope: float
    high_low_range: float
    close_open_diff: float

    # Candle flags
    is_doji: bool
    is_hammer: bool
    is_engulfing: bool

    # Multi-timeframe
    higher_tf_trend: Optional[float] = None
    lower_tf_volatility: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


class TechnicalIndicators:
    """Technical analysis indicators over full-length, index-aligned series."""

    @staticmethod
    def sma(prices: pd.Series, period: int) -> pd.Series:
        """Simple Moving Average. NaN until `period` values are available."""
        return prices.rolling(window=period).mean()

    @staticmethod
    def ema(prices: pd.Series, period: int) -> pd.Series:
        """Exponential Moving Average."""
        return prices.ewm(span=period, adjust=False).mean()

    @staticmethod
    def rsi(prices: pd.Series, period: int = 14) -> pd.Series:
        """Relative Strength Index."""
        delta = prices.diff()
        gain = (delta.where(delta > 0, 0)).rolling(window=period).mean()
        loss = (-delta.where(delta < 0, 0)).rolling(window=period).mean()

        rs = gain / loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))

        # No losses in the window: all-gain is 100, flat is neutral
        no_loss = (loss == 0) & gain.notna()
        rsi = rsi.mask(no_loss & (gain > 0), 100.0)
        rsi = rsi.mask(no_loss & (gain == 0), 50.0)
        return rsi

    @staticmethod
    def macd(prices: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> Dict[str, pd.Series]:
        """Moving Average Convergence Divergence."""
        ema_fast = prices.ewm(span=fast, adjust=False).mean()
        ema_slow = prices.ewm(span=slow, adjust=False).mean()
        macd_line = ema_fast - ema_slow
        signal_line = macd_line.ewm(span=signal, adjust=False).mean()
        histogram = macd_line - signal_line

        return {
            'macd': macd_line,
            'macd_signal': signal_line,
            'macd_hist': histogram
        }

    @staticmethod
    def bollinger_bands(prices: pd.Series, period: int = 20, std_dev: float = 2.0) -> Dict[str, pd.Series]:
        """Bollinger Bands with population standard deviation."""
        sma = prices.rolling(window=period).mean()
        std = prices.rolling(window=period).std(ddof=0)

        upper = sma + (std * std_dev)
        lower = sma - (std * std_dev)

        return {
            'bb_upper': upper,
            'bb_middle': sma,
            'bb_lower': lower,
            'bb_width': upper - lower
        }

    @staticmethod
    def atr(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> pd.Series:
        """Average True Range."""
        prev_close = close.shift(1)

        tr1 = high - low
        tr2 = abs(high - prev_close)
        tr3 = abs(low - prev_close)

        true_range = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
        return true_range.rolling(window=period).mean()

    @staticmethod
    def adx(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> Dict[str, pd.Series]:
        """Average Directional Index."""
        plus_dm = high.diff()
        minus_dm = -low.diff()

        plus_dm = plus_dm.where((plus_dm > minus_dm) & (plus_dm > 0), 0)
        minus_dm = minus_dm.where((minus_dm > plus_dm) & (minus_dm > 0), 0)

        atr = TechnicalIndicators.atr(high, low, close, period).replace(0, np.nan)

        plus_di = 100 * (plus_dm.ewm(span=period).mean() / atr)
        minus_di = 100 * (minus_dm.ewm(span=period).mean() / atr)

        dx = 100 * abs(plus_di - minus_di) / (plus_di + minus_di).replace(0, np.nan)
        adx = dx.ewm(span=period).mean()

        return {
            'adx': adx,
            'plus_di': plus_di,
            'minus_di': minus_di
        }

    @staticmethod
    def stochastic(high: pd.Series, low: pd.Series, close: pd.Series,
                   k_period: int = 14, d_period: int = 3) -> Dict[str, pd.Series]:
        """Stochastic Oscillator."""
        lowest_low = low.rolling(window=k_period).min()
        highest_high = high.rolling(window=k_period).max()

        stoch_k = 100 * (close - lowest_low) / (highest_high - lowest_low).replace(0, np.nan)
        stoch_d = stoch_k.rolling(window=d_period).mean()

        return {
            'stoch_k': stoch_k,
            'stoch_d': stoch_d
        }


class FeatureEngine:
    """
    Turns a bar series into feature vectors.

    Indicators are computed once over the whole series; vectors are emitted
    for every bar after the warm-up, reading the indicator row at the same
    index. Indicator values still undefined at that row fall back to neutral
    sentinels (close for averages and bands, 50 for RSI/stochastic, 0 otherwise).
    """

    def __init__(self, config=None):
        from ..config import FeatureConfig
        self.config = config or FeatureConfig()
        self.indicators = TechnicalIndicators()

    @property
    def warmup(self) -> int:
        return self.config.warmup_bars

    def compute_features(self, bars: Sequence[PriceBar],
                         higher_timeframe_bars: Optional[Sequence[PriceBar]] = None,
                         lower_timeframe_bars: Optional[Sequence[PriceBar]] = None) -> List[FeatureVector]:
        """
        Compute one feature vector per bar index >= warm-up.

        Args:
            bars: Main timeframe bars, oldest first
            higher_timeframe_bars: Optional bars whose last move sets `higher_tf_trend`
            lower_timeframe_bars: Optional bars whose recent spread sets `lower_tf_volatility`

        Returns:
            Feature vectors, oldest first
        """
        if len(bars) < self.warmup:
            raise InsufficientDataError(
                f"Need at least {self.warmup} bars to compute features, got {len(bars)}"
            )

        df = bars_to_frame(bars)
        ind = self._compute_indicators(df)

        higher_tf_trend = self._higher_timeframe_trend(higher_timeframe_bars)
        lower_tf_volatility = self._lower_timeframe_volatility(lower_timeframe_bars)

        closes = df['close'].values
        volumes = df['volume'].values

        vectors = []
        for i in range(self.warmup, len(bars)):
            bar = bars[i]
            row = ind.iloc[i]
            prev_close = closes[i - 1]

            if prev_close > 0:
                returns = (bar.close - prev_close) / prev_close * 100
                log_returns = float(np.log(bar.close / prev_close)) if bar.close > 0 else 0.0
            else:
                returns = 0.0
                log_returns = 0.0

            vectors.append(FeatureVector(
                timestamp=bar.timestamp,
                open=bar.open,
                high=bar.high,
                low=bar.low,
                close=bar.close,
                volume=bar.volume,
                returns=float(returns),
                log_returns=log_returns,
                sma_20=self._value(row['sma_20'], bar.close),
                sma_50=self._value(row['sma_50'], bar.close),
                sma_200=self._value(row['sma_200'], bar.close),
                ema_9=self._value(row['ema_9'], bar.close),
                ema_21=self._value(row['ema_21'], bar.close),
                ema_50=self._value(row['ema_50'], bar.close),
                rsi_14=self._value(row['rsi_14'], 50.0),
                macd=self._value(row['macd'], 0.0),
                macd_signal=self._value(row['macd_signal'], 0.0),
                macd_histogram=self._value(row['macd_hist'], 0.0),
                stoch_k=self._value(row['stoch_k'], 50.0),
                stoch_d=self._value(row['stoch_d'], 50.0),
                atr_14=self._value(row['atr_14'], 0.0),
                bb_upper=self._value(row['bb_upper'], bar.close),
                bb_middle=self._value(row['bb_middle'], bar.close),
                bb_lower=self._value(row['bb_lower'], bar.close),
                bb_width=self._value(row['bb_width'], 0.0),
                adx_14=self._value(row['adx'], 0.0),
                price_slope=float((closes[i] - closes[i - 5]) / 5),
                volume_slope=float((volumes[i] - volumes[i - 5]) / 5),
                high_low_range=bar.high - bar.low,
                close_open_diff=bar.close - bar.open,
                is_doji=PatternDetector.is_doji(bar),
                is_hammer=PatternDetector.is_hammer(bar),
                is_engulfing=PatternDetector.is_engulfing(bars[i - 1], bar),
                higher_tf_trend=higher_tf_trend,
                lower_tf_volatility=lower_tf_volatility
            ))

        logger.debug(f"Computed {len(vectors)} feature vectors from {len(bars)} bars")
        return vectors

    def _compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        """All indicators as columns aligned with the bar frame."""
        close = df['close']
        high = df['high']
        low = df['low']

        ind = pd.DataFrame(index=df.index)
        ind['sma_20'] = self.indicators.sma(close, 20)
        ind['sma_50'] = self.indicators.sma(close, 50)
        ind['sma_200'] = self.indicators.sma(close, 200)
        ind['ema_9'] = self.indicators.ema(close, 9)
        ind['ema_21'] = self.indicators.ema(close, 21)
        ind['ema_50'] = self.indicators.ema(close, 50)
        ind['rsi_14'] = self.indicators.rsi(close, 14)
        ind['atr_14'] = self.indicators.atr(high, low, close, 14)

        for name, series in self.indicators.macd(close).items():
            ind[name] = series
        for name, series in self.indicators.bollinger_bands(close).items():
            ind[name] = series
        for name, series in self.indicators.stochastic(high, low, close).items():
            ind[name] = series
        ind['adx'] = self.indicators.adx(high, low, close)['adx']

        return ind.replace([np.inf, -np.inf], np.nan)

    @staticmethod
    def _value(value, default: float) -> float:
        if value is None or not np.isfinite(value):
            return float(default)
        return float(value)

    @staticmethod
    def _higher_timeframe_trend(bars: Optional[Sequence[PriceBar]]) -> Optional[float]:
        """Percent change between the last two higher-timeframe closes."""
        if not bars:
            return None
        last = bars[-1].close
        previous = bars[-2].close if len(bars) > 1 else last
        if previous == 0:
            return 0.0
        return float((last - previous) / previous * 100)

    @staticmethod
    def _lower_timeframe_volatility(bars: Optional[Sequence[PriceBar]]) -> Optional[float]:
        """Population std-dev of the last 20 lower-timeframe closes."""
        if not bars:
            return None
        closes = np.array([b.close for b in bars[-20:]], dtype=float)
        return float(np.std(closes))

    @staticmethod
    def normalize(vectors: Sequence[FeatureVector]) -> np.ndarray:
        """
        Scale feature vectors into an (n, 18) matrix, columns as in
        NORMALIZED_COLUMNS. Zero denominators and non-finite results become 0.
        """
        def ratio(numerator: float, denominator: float) -> float:
            return numerator / denominator if denominator else 0.0

        rows = []
        for f in vectors:
            rows.append([
                f.returns / 10,
                f.log_returns,
                f.rsi_14 / 100,
                ratio(f.macd, f.close),
                ratio(f.macd_histogram, f.close),
                f.stoch_k / 100,
                ratio(f.atr_14, f.close),
                ratio(f.bb_width, f.close),
                f.adx_14 / 100,
                ratio(f.price_slope, f.close),
                ratio(f.volume_slope, f.volume),
                ratio(f.high_low_range, f.close),
                ratio(f.close_open_diff, f.close),
                1.0 if f.is_doji else 0.0,
                1.0 if f.is_hammer else 0.0,
                1.0 if f.is_engulfing else 0.0,
                (f.higher_tf_trend or 0.0) / 10,
                ratio(f.lower_tf_volatility or 0.0, f.close),
            ])

        matrix = np.array(rows, dtype=float).reshape(len(rows), len(NORMALIZED_COLUMNS))
        return np.nan_to_num(matrix, nan=0.0, posinf=0.0, neginf=0.0)
