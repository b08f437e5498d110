import logging
import unittest

import numpy as np

from crypto_trading.config import ForecastConfig
from crypto_trading.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    InsufficientSequenceError
)
from crypto_trading.ml import EnsembleForecaster, ModelName, PREDICTORS, reconstruct_prices

logging.disable(logging.CRITICAL)


def flat_window(rows=60):
    window = np.zeros((rows, 18))
    window[:, 2] = 0.5  # neutral RSI
    return window


def random_window(seed, rows=60):
    rng = np.random.RandomState(seed)
    window = rng.normal(0, 0.05, (rows, 18))
    window[:, 2] = rng.uniform(0, 1, rows)
    return window


class TestPredict(unittest.TestCase):
    def setUp(self):
        self.forecaster = EnsembleForecaster()

    def test_flat_market_forecasts_current_price(self):
        result = self.forecaster.predict(flat_window(), 100.0, "1h")

        self.assertLess(abs(result.predicted_price - 100.0) / 100.0, 0.01)
        self.assertGreater(result.confidence, 0.3)
        self.assertEqual(result.model_label, "ENSEMBLE")
        self.assertEqual(set(result.model_predictions), set(ModelName))
        for prediction in result.model_predictions.values():
            self.assertAlmostEqual(prediction, 100.0)

    def test_short_sequence_fails(self):
        with self.assertRaises(InsufficientSequenceError):
            self.forecaster.predict(flat_window(59), 100.0, "1h")
        with self.assertRaises(InsufficientDataError):
            self.forecaster.predict(flat_window(10), 100.0, "1h")

    def test_non_positive_price_fails(self):
        with self.assertRaises(ValueError):
            self.forecaster.predict(flat_window(), 0.0, "1h")

    def test_only_last_rows_are_used(self):
        long_window = np.vstack([random_window(1, rows=40), flat_window()])
        result = self.forecaster.predict(long_window, 100.0, "1h")
        self.assertAlmostEqual(result.predicted_price, 100.0)

    def test_confidence_is_bounded(self):
        for seed in range(20):
            result = self.forecaster.predict(random_window(seed), 250.0, "15m")
            self.assertGreaterEqual(result.confidence, 0.3)
            self.assertLessEqual(result.confidence, 1.0)
            self.assertTrue(np.isfinite(result.predicted_price))

    def test_close_time_follows_timeframe(self):
        hourly = self.forecaster.predict(flat_window(), 100.0, "1h")
        unknown = self.forecaster.predict(flat_window(), 100.0, "7x")

        self.assertEqual(hourly.closes_at - hourly.timestamp, 3600000)
        self.assertEqual(unknown.closes_at - unknown.timestamp, 60000)

    def test_to_dict_uses_model_names(self):
        data = self.forecaster.predict(flat_window(), 100.0, "1h").to_dict()
        self.assertIn("recency", data["model_predictions"])
        self.assertEqual(data["timeframe"], "1h")


class TestWeights(unittest.TestCase):
    def setUp(self):
        self.forecaster = EnsembleForecaster()

    def assertWeightsValid(self):
        weights = self.forecaster.get_model_weights()
        self.assertAlmostEqual(sum(weights.values()), 1.0, places=9)
        for weight in weights.values():
            self.assertGreaterEqual(weight, 0.05 - 1e-12)

    def test_initial_weights_sum_to_one(self):
        weights = self.forecaster.get_model_weights()
        self.assertEqual(len(weights), 6)
        self.assertAlmostEqual(weights[ModelName.RECENCY], 0.20)
        self.assertWeightsValid()

    def test_weights_stay_valid_under_updates(self):
        rng = np.random.RandomState(0)
        models = list(ModelName)
        for _ in range(500):
            model = models[rng.randint(len(models))]
            self.forecaster.update_weights(model, 100.0, float(rng.uniform(0, 200)))
            self.assertWeightsValid()

    def test_inaccurate_model_sinks_to_floor(self):
        for _ in range(200):
            self.forecaster.update_weights(ModelName.TREND_DETECTION, 100.0, 0.0)
        self.assertAlmostEqual(self.forecaster.get_model_weights()[ModelName.TREND_DETECTION], 0.05)
        self.assertWeightsValid()

    def test_accurate_model_gains_weight(self):
        before = self.forecaster.get_model_weights()[ModelName.ATTENTION]
        for _ in range(10):
            self.forecaster.update_weights(ModelName.ATTENTION, 100.0, 100.0)
        self.assertGreater(self.forecaster.get_model_weights()[ModelName.ATTENTION], before)

    def test_accuracy_score(self):
        self.forecaster.update_weights(ModelName.BLEND, 100.0, 90.0)
        accuracy = self.forecaster.get_model_accuracy()

        self.assertAlmostEqual(accuracy[ModelName.BLEND], 0.9)
        self.assertEqual(accuracy[ModelName.RECENCY], 0.0)

    def test_accuracy_never_negative(self):
        self.forecaster.update_weights(ModelName.BLEND, 100.0, 500.0)
        self.assertEqual(self.forecaster.get_model_accuracy()[ModelName.BLEND], 0.0)

    def test_history_is_capped(self):
        for _ in range(150):
            self.forecaster.update_weights(ModelName.RECENCY, 100.0, 99.0)
        self.assertEqual(len(self.forecaster.accuracy_history[ModelName.RECENCY]), 100)

    def test_instances_do_not_share_weights(self):
        other = EnsembleForecaster()
        for _ in range(50):
            self.forecaster.update_weights(ModelName.RECENCY, 100.0, 0.0)
        self.assertEqual(other.get_model_weights(), EnsembleForecaster().get_model_weights())
        self.assertNotEqual(other.get_model_weights(), self.forecaster.get_model_weights())

    def test_unreachable_floor_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            EnsembleForecaster(ForecastConfig(min_weight=0.2))

    def test_missing_initial_weight_is_rejected(self):
        config = ForecastConfig()
        del config.initial_weights["attention"]
        with self.assertRaises(ConfigurationError):
            EnsembleForecaster(config)


class TestTrainOnHistory(unittest.TestCase):
    def setUp(self):
        self.forecaster = EnsembleForecaster()

    def test_too_little_history_is_skipped(self):
        self.assertEqual(self.forecaster.train_on_history(flat_window(9), [100.0] * 9), 0)
        self.assertTrue(all(len(h) == 0 for h in self.forecaster.accuracy_history.values()))

    def test_replays_last_twenty_points(self):
        replayed = self.forecaster.train_on_history(random_window(3, rows=100), [100.0] * 100)

        self.assertEqual(replayed, 20)
        for history in self.forecaster.accuracy_history.values():
            self.assertEqual(len(history), 20)
        self.assertAlmostEqual(sum(self.forecaster.get_model_weights().values()), 1.0)

    def test_needs_full_lookback_before_each_point(self):
        self.assertEqual(self.forecaster.train_on_history(flat_window(70), [100.0] * 70), 10)

    def test_length_mismatch_fails(self):
        with self.assertRaises(ValueError):
            self.forecaster.train_on_history(flat_window(70), [100.0] * 69)


class TestReconstructPrices(unittest.TestCase):
    def test_path_ends_at_anchor(self):
        window = np.zeros((3, 18))
        window[:, 0] = [0.0, 1.0, -0.5]  # +10%, then -5%

        prices = reconstruct_prices(window, 95.0)

        self.assertAlmostEqual(prices[-1], 95.0)
        self.assertAlmostEqual(prices[1], 100.0)
        self.assertAlmostEqual(prices[0], 100.0 / 1.1)

    def test_extreme_returns_are_clipped(self):
        window = np.zeros((2, 18))
        window[1, 0] = -20.0
        prices = reconstruct_prices(window, 1.0)
        self.assertTrue(np.all(np.isfinite(prices)))

    def test_every_model_has_a_predictor(self):
        self.assertEqual(set(PREDICTORS), set(ModelName))


if __name__ == "__main__":
    unittest.main()
