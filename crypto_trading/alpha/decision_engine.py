"""
Decision Engine Module
======================
Combines the forecast, detected patterns, indicators and multi-timeframe
agreement into one BUY/SELL/HOLD signal.

Factor weights:
- Forecast: 30% x forecast confidence
- Candle patterns: 20% x pattern confidence, each
- Chart patterns: 20% x pattern confidence, each
- Indicators: 20% group (RSI 0.3, MACD 0.3, Bollinger 0.2, ADX 0.2)
- Multi-timeframe agreement: 10%
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Sequence
from enum import Enum
import math
import logging

from ..config import StrategyTier
from ..features.feature_engine import FeatureVector
from ..ml.ensemble import PredictionResult
from ..patterns.pattern_detector import CandlePattern, ChartPattern, PatternBias

logger = logging.getLogger(__name__)


class SignalAction(Enum):
    """Trading signal actions."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass
class TradingSignal:
    """Final trading decision for one instrument."""
    action: SignalAction
    confidence: float
    entry_price: float
    reasons: List[str] = field(default_factory=list)
    timestamp: int = field(default_factory=lambda: int(datetime.now().timestamp() * 1000))

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'confidence': self.confidence,
            'entry_price': self.entry_price,
            'reasons': list(self.reasons),
            'timestamp': self.timestamp
        }


# Minimum net confidence to act
MIN_CONFIDENCE: Dict[StrategyTier, float] = {
    StrategyTier.AGGRESSIVE: 0.55,
    StrategyTier.MEDIUM: 0.65,
    StrategyTier.CONSERVATIVE: 0.75,
}


class DecisionEngine:
    """Weighted bull/bear scoring with strategy-dependent thresholds."""

    FORECAST_WEIGHT = 0.3
    FORECAST_THRESHOLD_PCT = 0.5
    CANDLE_WEIGHT = 0.2
    CHART_WEIGHT = 0.2
    INDICATOR_WEIGHT = 0.2
    TIMEFRAME_WEIGHT = 0.1
    ALIGNMENT_THRESHOLD_PCT = 0.3
    ALIGNMENT_SHARE = 0.7
    MIN_ALIGNMENT_TIMEFRAMES = 3

    def __init__(self, strategy: StrategyTier = StrategyTier.MEDIUM):
        self.strategy = strategy

    @property
    def min_confidence(self) -> float:
        return MIN_CONFIDENCE[self.strategy]

    def decide(self, prediction: PredictionResult,
               candle_patterns: Sequence[CandlePattern],
               chart_patterns: Sequence[ChartPattern],
               latest_features: FeatureVector,
               current_price: float,
               multi_timeframe_agreement: bool) -> TradingSignal:
        """
        Score every factor and produce a signal.

        Only factors that fire contribute weight, so a quiet factor does not
        dilute the ones that did fire. The indicator group counts its whole
        weight once any of its rules fires.
        """
        reasons = []
        scores = {PatternBias.BULLISH: 0.0, PatternBias.BEARISH: 0.0}
        total_weight = 0.0

        def add(bias: PatternBias, weight: float, reason: str):
            scores[bias] += weight
            reasons.append(reason)

        # 1. Forecast
        change_pct = (prediction.predicted_price - current_price) / current_price * 100
        forecast_weight = self.FORECAST_WEIGHT * prediction.confidence
        if change_pct > self.FORECAST_THRESHOLD_PCT:
            add(PatternBias.BULLISH, forecast_weight,
                f"Forecast +{change_pct:.2f}% (confidence {prediction.confidence:.0%})")
            total_weight += forecast_weight
        elif change_pct < -self.FORECAST_THRESHOLD_PCT:
            add(PatternBias.BEARISH, forecast_weight,
                f"Forecast {change_pct:.2f}% (confidence {prediction.confidence:.0%})")
            total_weight += forecast_weight

        # 2. Candle patterns
        for pattern in candle_patterns:
            if pattern.bias != PatternBias.NEUTRAL:
                add(pattern.bias, self.CANDLE_WEIGHT * pattern.confidence,
                    f"Candle pattern {pattern.name} ({pattern.bias.value.lower()})")
                total_weight += self.CANDLE_WEIGHT * pattern.confidence

        # 3. Chart patterns
        for pattern in chart_patterns:
            if pattern.bias != PatternBias.NEUTRAL:
                add(pattern.bias, self.CHART_WEIGHT * pattern.confidence,
                    f"Chart pattern {pattern.name} ({pattern.bias.value.lower()} {pattern.kind.value.lower()})")
                total_weight += self.CHART_WEIGHT * pattern.confidence

        # 4. Indicators
        f = latest_features
        indicator_reasons = len(reasons)
        if f.rsi_14 < 30:
            add(PatternBias.BULLISH, self.INDICATOR_WEIGHT * 0.3, f"RSI oversold ({f.rsi_14:.0f})")
        elif f.rsi_14 > 70:
            add(PatternBias.BEARISH, self.INDICATOR_WEIGHT * 0.3, f"RSI overbought ({f.rsi_14:.0f})")

        if f.macd > f.macd_signal and f.macd_histogram > 0:
            add(PatternBias.BULLISH, self.INDICATOR_WEIGHT * 0.3, "MACD bullish crossover")
        elif f.macd < f.macd_signal and f.macd_histogram < 0:
            add(PatternBias.BEARISH, self.INDICATOR_WEIGHT * 0.3, "MACD bearish crossover")

        if f.close < f.bb_lower:
            add(PatternBias.BULLISH, self.INDICATOR_WEIGHT * 0.2, "Close below lower Bollinger band")
        elif f.close > f.bb_upper:
            add(PatternBias.BEARISH, self.INDICATOR_WEIGHT * 0.2, "Close above upper Bollinger band")

        if f.adx_14 > 25:
            if f.close > f.sma_50:
                add(PatternBias.BULLISH, self.INDICATOR_WEIGHT * 0.2, f"Strong uptrend (ADX {f.adx_14:.0f})")
            else:
                add(PatternBias.BEARISH, self.INDICATOR_WEIGHT * 0.2, f"Strong downtrend (ADX {f.adx_14:.0f})")

        if len(reasons) > indicator_reasons:
            total_weight += self.INDICATOR_WEIGHT

        # 5. Multi-timeframe agreement
        if multi_timeframe_agreement and f.higher_tf_trend:
            if f.higher_tf_trend > 0:
                add(PatternBias.BULLISH, self.TIMEFRAME_WEIGHT, "Multi-timeframe alignment bullish")
            else:
                add(PatternBias.BEARISH, self.TIMEFRAME_WEIGHT, "Multi-timeframe alignment bearish")
            total_weight += self.TIMEFRAME_WEIGHT

        # Normalize and threshold
        if total_weight > 0:
            net_score = (scores[PatternBias.BULLISH] - scores[PatternBias.BEARISH]) / total_weight
        else:
            net_score = 0.0
        confidence = abs(net_score)

        action = SignalAction.HOLD
        if confidence >= self.min_confidence and net_score != 0:
            action = SignalAction.BUY if net_score > 0 else SignalAction.SELL
        else:
            reasons.append(
                f"Insufficient confidence ({confidence:.0%} < {self.min_confidence:.0%})"
            )

        logger.debug(f"Decision {action.value} confidence={confidence:.2f} "
                     f"bull={scores[PatternBias.BULLISH]:.3f} bear={scores[PatternBias.BEARISH]:.3f}")

        return TradingSignal(
            action=action,
            confidence=confidence,
            entry_price=current_price,
            reasons=reasons
        )

    def check_multi_timeframe_alignment(self, predictions_by_timeframe: Mapping[str, PredictionResult],
                                        current_price: float) -> bool:
        """True when at least 70% of 3+ timeframe forecasts move the same way."""
        count = len(predictions_by_timeframe)
        if count < self.MIN_ALIGNMENT_TIMEFRAMES:
            return False

        bullish = 0
        bearish = 0
        for prediction in predictions_by_timeframe.values():
            change_pct = (prediction.predicted_price - current_price) / current_price * 100
            if change_pct > self.ALIGNMENT_THRESHOLD_PCT:
                bullish += 1
            elif change_pct < -self.ALIGNMENT_THRESHOLD_PCT:
                bearish += 1

        threshold = math.ceil(count * self.ALIGNMENT_SHARE)
        return bullish >= threshold or bearish >= threshold

    def update_strategy(self, strategy: StrategyTier):
        logger.info(f"Decision strategy: {self.strategy.value} -> {strategy.value}")
        self.strategy = strategy
