"""
Ensemble Forecaster Module
==========================

Six closed-form price predictors combined with adaptive weights:

1. Recency-weighted average with momentum
2. Recent/historical blend with volatility adjustment
3. Sliding-window trend extrapolation
4. Attention-style similar pattern search
5. Rule-based indicator adjustments (RSI, MACD, volume spikes)
6. Directional step counting

Predictors work on a price path rebuilt from the normalized return column
and anchored on the current price, so every sub-prediction is a price.
Weights are nudged online by each predictor's recent accuracy.
"""

import numpy as np
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Sequence
from enum import Enum
import logging

from ..data.market_data import timeframe_to_ms
from ..exceptions import ConfigurationError, InsufficientSequenceError

logger = logging.getLogger(__name__)


# Columns of the normalized feature matrix read by the predictors
RETURNS_COLUMN = 0
RSI_COLUMN = 2
MACD_COLUMN = 3
VOLUME_SLOPE_COLUMN = 10


class ModelName(Enum):
    """Sub-predictors of the ensemble."""
    RECENCY = "recency"
    BLEND = "blend"
    SLIDING_TREND = "sliding_trend"
    ATTENTION = "attention"
    RULE_BASED = "rule_based"
    TREND_DETECTION = "trend_detection"


@dataclass
class PredictionResult:
    """Ensemble forecast for one instrument and timeframe."""
    predicted_price: float
    confidence: float  # 0.3 to 1.0
    timestamp: int  # Epoch ms
    closes_at: int  # Epoch ms when the forecast bar closes
    timeframe: str
    model_label: str = "ENSEMBLE"
    model_predictions: Dict[ModelName, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'predicted_price': self.predicted_price,
            'confidence': self.confidence,
            'timestamp': self.timestamp,
            'closes_at': self.closes_at,
            'timeframe': self.timeframe,
            'model_label': self.model_label,
            'model_predictions': {m.value: p for m, p in self.model_predictions.items()}
        }


def reconstruct_prices(window: np.ndarray, anchor_price: float) -> np.ndarray:
    """
    Rebuild a price path from the return column, ending at `anchor_price`.

    Column 0 holds percent returns divided by 10, so the fractional return of
    row i is `window[i, 0] / 10`; the path is walked backwards from the anchor.
    """
    returns = np.clip(window[:, RETURNS_COLUMN] / 10, -0.99, None)
    prices = np.empty(len(window), dtype=float)
    prices[-1] = anchor_price
    for i in range(len(window) - 1, 0, -1):
        prices[i - 1] = prices[i] / (1 + returns[i])
    return prices


def _relative_change(start: float, end: float) -> float:
    return (end - start) / start if start else 0.0


class Predictor(ABC):
    """One ensemble member."""

    @abstractmethod
    def predict(self, prices: np.ndarray, window: np.ndarray) -> float:
        """
        Predict the next price.

        Args:
            prices: Reconstructed price path, last entry is the current price
            window: Normalized feature rows aligned with `prices`
        """
        pass


class RecencyPredictor(Predictor):
    """Exponentially recency-weighted average, scaled by 10-bar momentum."""

    def predict(self, prices, window):
        n = len(prices)
        weights = np.exp(np.arange(n) / n)
        prediction = float(np.sum(prices * weights) / np.sum(weights))

        recent = prices[-10:]
        momentum = _relative_change(recent[0], recent[-1])
        return prediction * (1 + momentum * 0.3)


class BlendPredictor(Predictor):
    """70/30 blend of the recent and historical mean price."""

    RECENT_BARS = 20

    def predict(self, prices, window):
        recent = prices[-self.RECENT_BARS:]
        historical = prices[:-self.RECENT_BARS]

        recent_avg = float(np.mean(recent))
        historical_avg = float(np.mean(historical)) if len(historical) > 0 else recent_avg
        prediction = recent_avg * 0.7 + historical_avg * 0.3

        return prediction * (1 + self._volatility(recent) * 0.1)

    @staticmethod
    def _volatility(prices: np.ndarray) -> float:
        if len(prices) < 2:
            return 0.0
        returns = np.diff(prices) / prices[:-1]
        return float(np.std(returns))


class SlidingTrendPredictor(Predictor):
    """Average of 5-bar trend extrapolations across the window."""

    WINDOW = 5

    def predict(self, prices, window):
        extrapolations = []
        for i in range(len(prices) - self.WINDOW + 1):
            segment = prices[i:i + self.WINDOW]
            trend = _relative_change(segment[0], segment[-1])
            extrapolations.append(segment[-1] * (1 + trend))
        if not extrapolations:
            return float(prices[-1])
        return float(np.mean(extrapolations))


class AttentionPredictor(Predictor):
    """
    Looks for earlier 10-bar patterns similar to the latest one and averages
    the prices that followed them, with the current price as a unit prior.
    """

    PATTERN = 10
    SIMILARITY_THRESHOLD = 0.7

    def predict(self, prices, window):
        current_pattern = prices[-self.PATTERN:]
        current_price = float(prices[-1])

        prediction = current_price
        total_attention = 0.0

        for i in range(len(prices) - self.PATTERN):
            similarity = self._similarity(current_pattern, prices[i:i + self.PATTERN])
            if similarity > self.SIMILARITY_THRESHOLD:
                prediction += prices[i + self.PATTERN] * similarity
                total_attention += similarity

        if total_attention > 0:
            return float(prediction / (total_attention + 1))
        return current_price

    @classmethod
    def _similarity(cls, first: np.ndarray, second: np.ndarray) -> float:
        if len(first) != len(second):
            return 0.0
        return float(abs(np.mean(cls._min_max(first) * cls._min_max(second))))

    @staticmethod
    def _min_max(values: np.ndarray) -> np.ndarray:
        spread = values.max() - values.min()
        return (values - values.min()) / (spread if spread else 1.0)


class RuleBasedPredictor(Predictor):
    """Adjusts the current price by RSI extremes, MACD and volume spikes."""

    def predict(self, prices, window):
        last = window[-1]
        prediction = float(prices[-1])

        rsi = last[RSI_COLUMN] * 100
        if rsi > 70:
            prediction *= 0.98
        elif rsi < 30:
            prediction *= 1.02

        prediction *= 1 + last[MACD_COLUMN]

        # Volume grew more than 10% of current volume per bar
        if last[VOLUME_SLOPE_COLUMN] > 0.1:
            trend = _relative_change(prices[-5], prices[-1])
            prediction *= 1 + trend * 0.2

        return prediction


class TrendDetectionPredictor(Predictor):
    """Counts up/down steps over the last 10 prices; 6 or more is a trend."""

    LOOKBACK = 10
    MIN_STEPS = 6

    def predict(self, prices, window):
        current_price = float(prices[-1])
        if len(prices) < self.LOOKBACK:
            return current_price

        steps = np.diff(prices[-self.LOOKBACK:])
        change = _relative_change(prices[0], prices[-1])

        if np.sum(steps > 0) >= self.MIN_STEPS:
            return current_price * (1 + max(0.0, change) * 0.02)
        if np.sum(steps < 0) >= self.MIN_STEPS:
            return current_price * (1 - max(0.0, -change) * 0.02)
        return current_price


PREDICTORS: Dict[ModelName, Predictor] = {
    ModelName.RECENCY: RecencyPredictor(),
    ModelName.BLEND: BlendPredictor(),
    ModelName.SLIDING_TREND: SlidingTrendPredictor(),
    ModelName.ATTENTION: AttentionPredictor(),
    ModelName.RULE_BASED: RuleBasedPredictor(),
    ModelName.TREND_DETECTION: TrendDetectionPredictor(),
}


class EnsembleForecaster:
    """
    Weighted ensemble of the six predictors with online weight learning.

    Owns its weight set and accuracy history; nothing is shared between
    instances.
    """

    def __init__(self, config=None):
        from ..config import ForecastConfig
        self.config = config or ForecastConfig()
        self.predictors = dict(PREDICTORS)

        if self.config.min_weight * len(self.predictors) > 1:
            raise ConfigurationError(
                f"min_weight {self.config.min_weight} cannot hold for {len(self.predictors)} models"
            )

        self.weights: Dict[ModelName, float] = {
            ModelName(name): float(weight)
            for name, weight in self.config.initial_weights.items()
        }
        missing = set(self.predictors) - set(self.weights)
        if missing:
            raise ConfigurationError(f"Missing initial weights for {sorted(m.value for m in missing)}")

        self.accuracy_history: Dict[ModelName, Deque[float]] = {
            model: deque(maxlen=self.config.history_size) for model in self.predictors
        }
        self._renormalize()

    @property
    def sequence_length(self) -> int:
        return self.config.sequence_length

    def predict(self, normalized_sequence: np.ndarray, current_price: float,
                timeframe: str) -> PredictionResult:
        """
        Forecast the price at the close of the next `timeframe` bar.

        Args:
            normalized_sequence: Normalized feature rows, oldest first
            current_price: Latest traded price
            timeframe: Bar timeframe of the sequence

        Returns:
            PredictionResult with smoothed price and agreement-based confidence
        """
        sequence = np.asarray(normalized_sequence, dtype=float)
        if len(sequence) < self.sequence_length:
            raise InsufficientSequenceError(
                f"Need at least {self.sequence_length} feature rows, got {len(sequence)}"
            )
        if current_price <= 0:
            raise ValueError(f"current_price must be positive, got {current_price}")

        window = sequence[-self.sequence_length:]
        predictions = self._sub_predictions(window, current_price)

        total_weight = sum(self.weights[m] for m in predictions)
        ensemble = sum(p * self.weights[m] for m, p in predictions.items()) / total_weight

        smoothing = self.config.smoothing
        predicted_price = current_price * smoothing + ensemble * (1 - smoothing)
        if not np.isfinite(predicted_price):
            logger.warning(f"Non-finite ensemble forecast on {timeframe}, using current price")
            predicted_price = current_price

        std_dev = float(np.std(list(predictions.values())))
        confidence = 1 - (std_dev / current_price) * 100
        if np.isfinite(confidence):
            confidence = max(0.3, min(1.0, confidence))
        else:
            confidence = 0.3

        timestamp = int(datetime.now().timestamp() * 1000)

        return PredictionResult(
            predicted_price=float(predicted_price),
            confidence=float(confidence),
            timestamp=timestamp,
            closes_at=timestamp + timeframe_to_ms(timeframe),
            timeframe=timeframe,
            model_predictions=predictions
        )

    def _sub_predictions(self, window: np.ndarray, anchor_price: float) -> Dict[ModelName, float]:
        prices = reconstruct_prices(window, anchor_price)
        return {
            model: float(predictor.predict(prices, window))
            for model, predictor in self.predictors.items()
        }

    def update_weights(self, model: ModelName, actual_price: float, predicted_price: float):
        """Score one sub-prediction and nudge that model's weight."""
        if actual_price > 0:
            accuracy = max(0.0, 1 - abs(actual_price - predicted_price) / actual_price)
        else:
            accuracy = 0.0

        history = self.accuracy_history[model]
        history.append(accuracy)

        recent = list(history)[-self.config.accuracy_window:]
        recent_accuracy = sum(recent) / len(recent)

        self.weights[model] += self.config.learning_rate * (recent_accuracy - 0.5)
        self._renormalize()

    def _renormalize(self):
        """
        Rescale weights to sum to 1 with every weight >= min_weight.

        Weights pushed under the floor are pinned to it and the remaining mass
        is shared by the rest in proportion, repeated until nothing is under.
        """
        floor = self.config.min_weight
        raw = {m: max(w, floor) for m, w in self.weights.items()}

        total = sum(raw.values())
        if total <= 0:
            raise ConfigurationError("Model weights sum to zero")

        pinned = set()
        while True:
            free = [m for m in raw if m not in pinned]
            free_total = sum(raw[m] for m in free)
            remaining = 1.0 - floor * len(pinned)

            weights = {m: floor for m in pinned}
            weights.update({m: remaining * raw[m] / free_total for m in free})

            below = {m for m in free if weights[m] < floor}
            if not below:
                break
            pinned |= below

        self.weights = weights

    def train_on_history(self, feature_windows: np.ndarray, targets: Sequence[float]) -> int:
        """
        Replay recent history to update weights.

        Each of the last 20 rows with a full lookback before it is predicted
        from the preceding window, anchored on the previous target, and scored
        against its own target.

        Args:
            feature_windows: Normalized feature rows, oldest first
            targets: Close price per row

        Returns:
            Number of replayed points
        """
        features = np.asarray(feature_windows, dtype=float)
        if len(features) != len(targets):
            raise ValueError(f"Got {len(features)} feature rows for {len(targets)} targets")
        if len(features) < 10:
            return 0

        replayed = 0
        for i in range(min(len(features) - 1, 20)):
            idx = len(features) - 1 - i
            if idx < self.sequence_length:
                continue

            window = features[idx - self.sequence_length:idx]
            anchor = float(targets[idx - 1])
            if anchor <= 0:
                continue

            actual = float(targets[idx])
            for model, predicted in self._sub_predictions(window, anchor).items():
                self.update_weights(model, actual, predicted)
            replayed += 1

        if replayed:
            logger.debug(f"Trained on {replayed} points, weights: {self._format_weights()}")
        return replayed

    def get_model_weights(self) -> Dict[ModelName, float]:
        return dict(self.weights)

    def get_model_accuracy(self) -> Dict[ModelName, float]:
        """Mean recorded accuracy per model, 0 when nothing recorded."""
        return {
            model: (sum(history) / len(history) if history else 0.0)
            for model, history in self.accuracy_history.items()
        }

    def _format_weights(self) -> str:
        return ", ".join(f"{m.value}={w:.3f}" for m, w in self.weights.items())
