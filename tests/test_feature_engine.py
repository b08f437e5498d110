import dataclasses
import logging
import unittest

import numpy as np

from crypto_trading.exceptions import InsufficientDataError
from crypto_trading.features import FeatureEngine, NORMALIZED_COLUMNS, TechnicalIndicators
from tests.fixtures import make_bars, random_walk_closes

logging.disable(logging.CRITICAL)


class TestComputeFeatures(unittest.TestCase):
    def setUp(self):
        self.engine = FeatureEngine()

    def test_fewer_than_warmup_bars_fails(self):
        with self.assertRaises(InsufficientDataError):
            self.engine.compute_features([])
        for n in (1, 50, 199):
            with self.assertRaises(InsufficientDataError):
                self.engine.compute_features(make_bars(random_walk_closes(n)))

    def test_warmup_or_more_never_fails(self):
        self.assertEqual(self.engine.compute_features(make_bars(random_walk_closes(200))), [])
        self.assertEqual(len(self.engine.compute_features(make_bars(random_walk_closes(201)))), 1)

    def test_one_vector_per_bar_after_warmup(self):
        bars = make_bars(random_walk_closes(260))
        vectors = self.engine.compute_features(bars)

        self.assertEqual(len(vectors), 60)
        self.assertEqual(vectors[0].timestamp, bars[200].timestamp)
        self.assertEqual(vectors[-1].timestamp, bars[-1].timestamp)
        self.assertEqual(vectors[-1].close, bars[-1].close)

    def test_indicators_line_up_with_their_bar(self):
        closes = random_walk_closes(260, seed=3)
        vectors = self.engine.compute_features(make_bars(closes))

        first = vectors[0]
        self.assertAlmostEqual(first.sma_20, float(np.mean(closes[181:201])), places=8)
        self.assertAlmostEqual(first.sma_200, float(np.mean(closes[1:201])), places=8)
        self.assertAlmostEqual(first.returns, (closes[200] - closes[199]) / closes[199] * 100, places=8)
        self.assertAlmostEqual(first.price_slope, (closes[200] - closes[195]) / 5, places=8)

    def test_flat_market_uses_neutral_values(self):
        vectors = self.engine.compute_features(make_bars([100.0] * 230))
        last = vectors[-1]

        self.assertEqual(last.rsi_14, 50.0)
        self.assertEqual(last.adx_14, 0.0)
        self.assertEqual(last.macd, 0.0)
        self.assertAlmostEqual(last.bb_middle, 100.0)
        self.assertEqual(last.returns, 0.0)
        self.assertTrue(last.is_doji)
        self.assertIsNone(last.higher_tf_trend)
        self.assertIsNone(last.lower_tf_volatility)

    def test_rising_market_rsi_is_100(self):
        closes = [100.0 * (1.001 ** i) for i in range(220)]
        last = self.engine.compute_features(make_bars(closes))[-1]
        self.assertEqual(last.rsi_14, 100.0)
        self.assertGreater(last.macd, 0)

    def test_multi_timeframe_features(self):
        bars = make_bars(random_walk_closes(210))
        higher = make_bars([100.0, 102.0])
        lower_closes = random_walk_closes(40, seed=11)
        lower = make_bars(lower_closes)

        vectors = self.engine.compute_features(bars, higher_timeframe_bars=higher,
                                               lower_timeframe_bars=lower)

        for v in vectors:
            self.assertAlmostEqual(v.higher_tf_trend, 2.0)
            self.assertAlmostEqual(v.lower_tf_volatility, float(np.std(lower_closes[-20:])))

    def test_single_higher_timeframe_bar_has_zero_trend(self):
        vectors = self.engine.compute_features(make_bars(random_walk_closes(205)),
                                               higher_timeframe_bars=make_bars([100.0]))
        self.assertEqual(vectors[-1].higher_tf_trend, 0.0)


class TestNormalize(unittest.TestCase):
    def setUp(self):
        self.engine = FeatureEngine()
        self.vectors = self.engine.compute_features(
            make_bars(random_walk_closes(280)),
            higher_timeframe_bars=make_bars([100.0, 101.0]),
            lower_timeframe_bars=make_bars(random_walk_closes(30)),
        )

    def test_shape_and_scaling(self):
        matrix = self.engine.normalize(self.vectors)

        self.assertEqual(matrix.shape, (80, len(NORMALIZED_COLUMNS)))
        self.assertEqual(matrix.shape[1], 18)
        last = self.vectors[-1]
        self.assertAlmostEqual(matrix[-1, 0], last.returns / 10)
        self.assertAlmostEqual(matrix[-1, 2], last.rsi_14 / 100)
        self.assertAlmostEqual(matrix[-1, 6], last.atr_14 / last.close)
        self.assertAlmostEqual(matrix[-1, 16], 0.1)

    def test_zero_denominators_map_to_zero(self):
        broken = dataclasses.replace(self.vectors[-1], close=0.0, volume=0.0)
        row = self.engine.normalize([broken])[0]

        self.assertTrue(np.all(np.isfinite(row)))
        for column in (3, 4, 6, 7, 9, 10, 11, 12, 17):
            self.assertEqual(row[column], 0.0)

    def test_empty_input(self):
        self.assertEqual(self.engine.normalize([]).shape, (0, 18))


class TestTechnicalIndicators(unittest.TestCase):
    def test_sma_is_undefined_until_full_window(self):
        import pandas as pd

        sma = TechnicalIndicators.sma(pd.Series([1.0, 2.0, 3.0, 4.0]), 3)
        self.assertTrue(np.isnan(sma.iloc[1]))
        self.assertEqual(sma.iloc[2], 2.0)
        self.assertEqual(sma.iloc[3], 3.0)


if __name__ == "__main__":
    unittest.main()
