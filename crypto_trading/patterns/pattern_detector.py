"""
Pattern Detection Module
========================
Candle-level and chart-level formations with a directional bias.

Candle patterns look at the latest 1-3 bars; chart patterns search fixed
trailing windows (15-30 bars) using local extrema and linear trends.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence
from enum import Enum
import logging

from ..data.market_data import PriceBar

logger = logging.getLogger(__name__)


class PatternBias(Enum):
    """Directional bias of a detected pattern."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class PatternKind(Enum):
    """Chart pattern family."""
    REVERSAL = "REVERSAL"
    CONTINUATION = "CONTINUATION"


@dataclass
class CandlePattern:
    """Candle formation on the latest bars."""
    name: str
    bias: PatternBias
    confidence: float
    description: str = ""


@dataclass
class ChartPattern:
    """Multi-bar chart formation."""
    name: str
    bias: PatternBias
    kind: PatternKind
    confidence: float
    start_index: int
    end_index: int
    target_price: Optional[float] = None


class PatternDetector:
    """
    Stateless detector for candle and chart patterns.

    Geometric thresholds:
    - Shoulders / double tops / double bottoms: within 2% of each other
    - Triangle touches: within 1% of the flat level, at least 3 touches
    - Flag: initial move >= 3%, consolidation trend < 1% and volatility < 2%
    """

    DOJI_BODY_RATIO = 0.1
    MARUBOZU_BODY_RATIO = 0.95
    ENGULFING_BODY_RATIO = 1.2
    STAR_BODY_RATIO = 0.3
    EXTREMA_TOLERANCE = 0.02
    TOUCH_TOLERANCE = 0.01
    MIN_TOUCHES = 3
    FLAG_MIN_MOVE = 0.03
    FLAG_MAX_TREND = 0.01
    FLAG_MAX_VOLATILITY = 0.02

    # =====================
    # Entry points
    # =====================

    @classmethod
    def detect_candle_patterns(cls, bars: Sequence[PriceBar]) -> List[CandlePattern]:
        """Match the latest bars against the candle shape rules."""
        if len(bars) < 3:
            return []

        current = bars[-1]
        prev = bars[-2]
        prev2 = bars[-3]
        patterns = []

        if cls.is_doji(current):
            patterns.append(CandlePattern(
                name='Doji',
                bias=PatternBias.NEUTRAL,
                confidence=0.7,
                description='Market indecision, possible reversal'
            ))

        if cls.is_hammer(current):
            patterns.append(CandlePattern(
                name='Hammer',
                bias=PatternBias.BULLISH,
                confidence=0.75,
                description='Possible bearish-to-bullish reversal'
            ))

        if cls.is_inverted_hammer(current):
            patterns.append(CandlePattern(
                name='Inverted Hammer',
                bias=PatternBias.BULLISH,
                confidence=0.7,
                description='Possible bearish-to-bullish reversal'
            ))

        if cls.is_marubozu(current):
            patterns.append(CandlePattern(
                name='Marubozu',
                bias=PatternBias.BULLISH if current.is_bullish else PatternBias.BEARISH,
                confidence=0.8,
                description='Strong directional move'
            ))

        if cls.is_engulfing(prev, current):
            patterns.append(CandlePattern(
                name='Engulfing',
                bias=PatternBias.BULLISH if current.is_bullish else PatternBias.BEARISH,
                confidence=0.85,
                description='Strong reversal signal'
            ))

        if cls.is_morning_star(prev2, prev, current):
            patterns.append(CandlePattern(
                name='Morning Star',
                bias=PatternBias.BULLISH,
                confidence=0.9,
                description='Strong bearish-to-bullish reversal'
            ))

        if cls.is_evening_star(prev2, prev, current):
            patterns.append(CandlePattern(
                name='Evening Star',
                bias=PatternBias.BEARISH,
                confidence=0.9,
                description='Strong bullish-to-bearish reversal'
            ))

        return patterns

    @classmethod
    def detect_chart_patterns(cls, bars: Sequence[PriceBar]) -> List[ChartPattern]:
        """Run every chart detector; each contributes at most one match."""
        if len(bars) < 20:
            return []

        highs = np.array([b.high for b in bars], dtype=float)
        lows = np.array([b.low for b in bars], dtype=float)
        closes = np.array([b.close for b in bars], dtype=float)

        detectors = [
            cls._detect_head_and_shoulders(highs, lows),
            cls._detect_inverse_head_and_shoulders(highs, lows),
            cls._detect_double_top(highs),
            cls._detect_double_bottom(lows),
            cls._detect_ascending_triangle(highs, lows),
            cls._detect_descending_triangle(highs, lows),
            cls._detect_flag(closes),
        ]
        patterns = [p for p in detectors if p is not None]

        if patterns:
            logger.debug(f"Chart patterns: {[p.name for p in patterns]}")
        return patterns

    # =====================
    # Candle rules
    # =====================

    @staticmethod
    def _shadows(bar: PriceBar):
        lower = min(bar.open, bar.close) - bar.low
        upper = bar.high - max(bar.open, bar.close)
        return lower, upper

    @classmethod
    def is_doji(cls, bar: PriceBar) -> bool:
        return bar.range > 0 and bar.body / bar.range < cls.DOJI_BODY_RATIO

    @classmethod
    def is_hammer(cls, bar: PriceBar) -> bool:
        lower, upper = cls._shadows(bar)
        return lower > bar.body * 2 and upper < bar.body * 0.5

    @classmethod
    def is_inverted_hammer(cls, bar: PriceBar) -> bool:
        lower, upper = cls._shadows(bar)
        return upper > bar.body * 2 and lower < bar.body * 0.5

    @classmethod
    def is_marubozu(cls, bar: PriceBar) -> bool:
        return bar.range > 0 and bar.body / bar.range > cls.MARUBOZU_BODY_RATIO

    @classmethod
    def is_engulfing(cls, prev: PriceBar, current: PriceBar) -> bool:
        bullish = (
            prev.is_bearish and current.is_bullish and
            current.open <= prev.close and current.close >= prev.open
        )
        bearish = (
            prev.is_bullish and current.is_bearish and
            current.open >= prev.close and current.close <= prev.open
        )
        return (bullish or bearish) and current.body > prev.body * cls.ENGULFING_BODY_RATIO

    @classmethod
    def is_morning_star(cls, first: PriceBar, middle: PriceBar, last: PriceBar) -> bool:
        small_body = middle.body < first.body * cls.STAR_BODY_RATIO
        recovery = last.close > (first.open + first.close) / 2
        return first.is_bearish and small_body and last.is_bullish and recovery

    @classmethod
    def is_evening_star(cls, first: PriceBar, middle: PriceBar, last: PriceBar) -> bool:
        small_body = middle.body < first.body * cls.STAR_BODY_RATIO
        decline = last.close < (first.open + first.close) / 2
        return first.is_bullish and small_body and last.is_bearish and decline

    # =====================
    # Chart detectors
    # =====================

    @classmethod
    def _detect_head_and_shoulders(cls, highs: np.ndarray,
                                   lows: np.ndarray) -> Optional[ChartPattern]:
        """Three peaks, the middle one highest, shoulders level."""
        if len(highs) < 30:
            return None

        offset = len(highs) - 30
        recent = highs[-30:]
        peaks = cls._find_peaks(recent)
        if len(peaks) < 3:
            return None

        left, head, right = peaks[-3:]
        if (recent[head] > recent[left] and recent[head] > recent[right] and
                abs(recent[left] - recent[right]) / recent[left] < cls.EXTREMA_TOLERANCE):
            neckline = min(lows[offset + left], lows[offset + right])
            return ChartPattern(
                name='Head and Shoulders',
                bias=PatternBias.BEARISH,
                kind=PatternKind.REVERSAL,
                confidence=0.85,
                start_index=offset + left,
                end_index=offset + right,
                target_price=float(neckline - (recent[head] - neckline))
            )
        return None

    @classmethod
    def _detect_inverse_head_and_shoulders(cls, highs: np.ndarray,
                                           lows: np.ndarray) -> Optional[ChartPattern]:
        """Three valleys, the middle one lowest, shoulders level."""
        if len(lows) < 30:
            return None

        offset = len(lows) - 30
        recent = lows[-30:]
        valleys = cls._find_valleys(recent)
        if len(valleys) < 3:
            return None

        left, head, right = valleys[-3:]
        if (recent[head] < recent[left] and recent[head] < recent[right] and
                abs(recent[left] - recent[right]) / recent[left] < cls.EXTREMA_TOLERANCE):
            neckline = max(highs[offset + left], highs[offset + right])
            return ChartPattern(
                name='Inverse Head and Shoulders',
                bias=PatternBias.BULLISH,
                kind=PatternKind.REVERSAL,
                confidence=0.85,
                start_index=offset + left,
                end_index=offset + right,
                target_price=float(neckline + (neckline - recent[head]))
            )
        return None

    @classmethod
    def _detect_double_top(cls, highs: np.ndarray) -> Optional[ChartPattern]:
        offset = len(highs) - 20
        recent = highs[-20:]
        peaks = cls._find_peaks(recent)
        if len(peaks) < 2:
            return None

        first, second = peaks[-2:]
        if abs(recent[first] - recent[second]) / recent[first] < cls.EXTREMA_TOLERANCE:
            return ChartPattern(
                name='Double Top',
                bias=PatternBias.BEARISH,
                kind=PatternKind.REVERSAL,
                confidence=0.8,
                start_index=offset + first,
                end_index=offset + second
            )
        return None

    @classmethod
    def _detect_double_bottom(cls, lows: np.ndarray) -> Optional[ChartPattern]:
        offset = len(lows) - 20
        recent = lows[-20:]
        valleys = cls._find_valleys(recent)
        if len(valleys) < 2:
            return None

        first, second = valleys[-2:]
        if abs(recent[first] - recent[second]) / recent[first] < cls.EXTREMA_TOLERANCE:
            return ChartPattern(
                name='Double Bottom',
                bias=PatternBias.BULLISH,
                kind=PatternKind.REVERSAL,
                confidence=0.8,
                start_index=offset + first,
                end_index=offset + second
            )
        return None

    @classmethod
    def _detect_ascending_triangle(cls, highs: np.ndarray,
                                   lows: np.ndarray) -> Optional[ChartPattern]:
        """Flat resistance touched repeatedly, rising support."""
        recent_highs = highs[-20:]
        recent_lows = lows[-20:]

        resistance = recent_highs.max()
        touches = int(np.sum(np.abs(recent_highs - resistance) / resistance < cls.TOUCH_TOLERANCE))

        if touches >= cls.MIN_TOUCHES and cls._calculate_trend(recent_lows) > 0:
            return ChartPattern(
                name='Ascending Triangle',
                bias=PatternBias.BULLISH,
                kind=PatternKind.CONTINUATION,
                confidence=0.75,
                start_index=len(highs) - 20,
                end_index=len(highs) - 1,
                target_price=float(resistance * 1.05)
            )
        return None

    @classmethod
    def _detect_descending_triangle(cls, highs: np.ndarray,
                                    lows: np.ndarray) -> Optional[ChartPattern]:
        """Flat support touched repeatedly, falling resistance."""
        recent_highs = highs[-20:]
        recent_lows = lows[-20:]

        support = recent_lows.min()
        touches = int(np.sum(np.abs(recent_lows - support) / support < cls.TOUCH_TOLERANCE))

        if touches >= cls.MIN_TOUCHES and cls._calculate_trend(recent_highs) < 0:
            return ChartPattern(
                name='Descending Triangle',
                bias=PatternBias.BEARISH,
                kind=PatternKind.CONTINUATION,
                confidence=0.75,
                start_index=len(lows) - 20,
                end_index=len(lows) - 1,
                target_price=float(support * 0.95)
            )
        return None

    @classmethod
    def _detect_flag(cls, closes: np.ndarray) -> Optional[ChartPattern]:
        """Strong pole followed by a tight, flat consolidation."""
        if len(closes) < 15:
            return None

        recent = closes[-15:]
        initial_move = abs(recent[5] - recent[0]) / recent[0]
        if initial_move < cls.FLAG_MIN_MOVE:
            return None

        consolidation = recent[5:]
        trend = cls._calculate_trend(consolidation)
        volatility = cls._calculate_volatility(consolidation)

        if abs(trend) < cls.FLAG_MAX_TREND and volatility < cls.FLAG_MAX_VOLATILITY:
            return ChartPattern(
                name='Flag',
                bias=PatternBias.BULLISH if recent[5] > recent[0] else PatternBias.BEARISH,
                kind=PatternKind.CONTINUATION,
                confidence=0.7,
                start_index=len(closes) - 15,
                end_index=len(closes) - 1
            )
        return None

    # =====================
    # Helpers
    # =====================

    @staticmethod
    def _find_peaks(data: np.ndarray) -> List[int]:
        return [i for i in range(1, len(data) - 1)
                if data[i] > data[i - 1] and data[i] > data[i + 1]]

    @staticmethod
    def _find_valleys(data: np.ndarray) -> List[int]:
        return [i for i in range(1, len(data) - 1)
                if data[i] < data[i - 1] and data[i] < data[i + 1]]

    @staticmethod
    def _calculate_trend(data: np.ndarray) -> float:
        """Relative change from first to last point."""
        if len(data) < 2 or data[0] == 0:
            return 0.0
        return float((data[-1] - data[0]) / data[0])

    @staticmethod
    def _calculate_volatility(data: np.ndarray) -> float:
        """Population std-dev relative to the mean."""
        if len(data) < 2:
            return 0.0
        mean = np.mean(data)
        return float(np.std(data) / mean) if mean != 0 else 0.0
