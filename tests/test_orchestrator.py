import io
import logging
import unittest
from unittest import mock

from crypto_trading.alpha import SignalAction, TradingSignal
from crypto_trading.config import BotConfig, StrategyTier, TradingMode
from crypto_trading.data import SyntheticMarketData
from crypto_trading.exceptions import ConfigurationError, GatewayError
from crypto_trading.execution import LiveExchangeGateway, SimulatedExchangeGateway
from crypto_trading.monitoring import InMemoryLedger
from crypto_trading.orchestrator import PositionState, TradingBot, main
from tests.fixtures import (
    FailingLedger,
    FakeExchangeClient,
    StaticMarketData,
    make_bars,
    make_feature_vector,
    random_walk_closes
)

logging.disable(logging.CRITICAL)


def make_bot(instruments=("BTC/USDT",), failing=(), n_bars=300, balance=10000.0, ledger=None):
    config = BotConfig(instruments=list(instruments), tick_interval_seconds=0.01)
    config.exchange.initial_paper_balance = balance

    market = StaticMarketData(
        {instrument: make_bars(random_walk_closes(n_bars)) for instrument in instruments},
        failing=failing
    )
    gateway = SimulatedExchangeGateway(market, initial_balance=balance)
    ledger = ledger or InMemoryLedger()
    return TradingBot(config, gateway=gateway, ledger=ledger), market, ledger


def buy_signal(confidence=0.9):
    return TradingSignal(action=SignalAction.BUY, confidence=confidence, entry_price=100.0)


class TestTick(unittest.TestCase):
    def test_tick_forecasts_every_timeframe(self):
        bot, _, ledger = make_bot()

        self.assertTrue(bot.run_tick())

        self.assertEqual(len(ledger.predictions), 3)
        self.assertEqual({p.timeframe for p in ledger.predictions}, {"15m", "1h", "4h"})
        self.assertEqual(set(bot.predictions["BTC/USDT"]), {"15m", "1h", "4h"})
        self.assertEqual(bot.iteration, 1)
        self.assertIsNotNone(bot.last_update)

    def test_failing_instrument_does_not_stop_others(self):
        bot, _, ledger = make_bot(instruments=("BTC/USDT", "ETH/USDT"), failing=("ETH/USDT",))

        self.assertTrue(bot.run_tick())

        self.assertIn("BTC/USDT", bot.predictions)
        self.assertNotIn("ETH/USDT", bot.predictions)
        self.assertEqual({p.instrument for p in ledger.predictions}, {"BTC/USDT"})

    def test_short_history_is_skipped(self):
        bot, _, ledger = make_bot(n_bars=150)

        self.assertTrue(bot.run_tick())

        self.assertEqual(ledger.predictions, [])
        self.assertEqual(bot.predictions, {})

    def test_overlapping_tick_is_skipped(self):
        bot, _, _ = make_bot()
        bot._tick_in_progress = True

        self.assertFalse(bot.run_tick())
        self.assertEqual(bot.iteration, 0)

    def test_failed_entry_still_trains(self):
        bot, _, _ = make_bot()

        with mock.patch.object(bot.decision_engine, 'decide', return_value=buy_signal()), \
                mock.patch.object(bot, 'execute_signal', side_effect=GatewayError("no base")), \
                mock.patch.object(bot.forecaster, 'train_on_history') as train:
            self.assertTrue(bot.run_tick())

        train.assert_called_once()
        self.assertIn("BTC/USDT", bot.predictions)

    def test_failing_ledger_is_not_fatal(self):
        bot, _, _ = make_bot(ledger=FailingLedger())

        self.assertTrue(bot.run_tick())
        self.assertIn("BTC/USDT", bot.predictions)


class TestPositionLifecycle(unittest.TestCase):
    def setUp(self):
        self.bot, self.market, self.ledger = make_bot()
        self.market.prices["BTC/USDT"] = 100.0
        self.latest = make_feature_vector(atr_14=1.0, adx_14=60.0)

    def open_position(self):
        return self.bot.execute_signal("BTC/USDT", buy_signal(), 100.0, self.latest)

    def tick_at(self, price):
        self.market.prices["BTC/USDT"] = price
        self.bot.check_open_positions()

    def test_open_then_stop_loss(self):
        position = self.open_position()

        # 180 at risk over a 2.0 stop is 90 units, capped by 50% exposure to 50
        self.assertAlmostEqual(position.amount, 50.0)
        self.assertAlmostEqual(position.stop_loss_price, 98.0)
        self.assertAlmostEqual(position.take_profit_price, 104.0)
        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.OPEN)
        self.assertAlmostEqual(self.bot.gateway.fetch_balance()["USDT"], 5000.0)
        self.assertEqual([t.status for t in self.ledger.trades], ["OPEN"])
        self.assertEqual(self.ledger.trades[0].mode, "PAPER")

        self.tick_at(97.0)

        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.NONE)
        closed = self.ledger.trades[-1]
        self.assertEqual(closed.status, "CLOSED")
        self.assertEqual(closed.reason, "STOP_LOSS")
        self.assertAlmostEqual(closed.profit_loss, -150.0)
        self.assertIsNotNone(closed.closed_at)

        status = self.bot.get_status()
        self.assertEqual(status.total_trades, 1)
        self.assertAlmostEqual(status.profit_loss, -150.0)
        self.assertEqual(status.open_positions, 0)
        self.assertAlmostEqual(status.balance["USDT"], 9850.0)

    def test_one_position_per_instrument(self):
        self.assertIsNotNone(self.open_position())
        self.assertIsNone(self.open_position())
        self.assertEqual(len(self.ledger.trades), 1)

    def test_low_balance_is_skipped(self):
        bot, market, ledger = make_bot(balance=5.0)
        market.prices["BTC/USDT"] = 100.0

        self.assertIsNone(bot.execute_signal("BTC/USDT", buy_signal(), 100.0, self.latest))
        self.assertEqual(ledger.trades, [])

    def test_entry_gate_rejects_weak_trend(self):
        weak = make_feature_vector(atr_14=1.0, adx_14=10.0)

        self.assertIsNone(self.bot.execute_signal("BTC/USDT", buy_signal(), 100.0, weak))
        self.assertEqual(self.bot.gateway.orders, [])

    def test_paper_sell_entry_without_holdings_is_aborted(self):
        signal = TradingSignal(action=SignalAction.SELL, confidence=0.9, entry_price=100.0)

        self.assertIsNone(self.bot.execute_signal("BTC/USDT", signal, 100.0, self.latest))
        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.NONE)

    def test_trailing_stop(self):
        self.open_position()

        for price in (105.0, 104.0, 102.0):
            self.tick_at(price)
            self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.OPEN)
        self.assertEqual(self.bot.open_positions["BTC/USDT"].highest_price_seen, 105.0)

        self.tick_at(102.5)

        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.NONE)
        self.assertEqual(self.ledger.trades[-1].reason, "TRAILING_STOP")
        self.assertAlmostEqual(self.ledger.trades[-1].profit_loss, 125.0)

    def test_failed_close_keeps_position(self):
        self.open_position()

        with mock.patch.object(self.bot.gateway, 'place_order', side_effect=GatewayError("down")):
            self.tick_at(97.0)
        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.OPEN)

        self.tick_at(97.0)
        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.NONE)

    def test_ledger_failure_does_not_lose_position(self):
        bot, market, _ = make_bot(ledger=FailingLedger())
        market.prices["BTC/USDT"] = 100.0

        self.assertIsNotNone(bot.execute_signal("BTC/USDT", buy_signal(), 100.0, self.latest))
        self.assertEqual(bot.position_state("BTC/USDT"), PositionState.OPEN)

    def test_open_positions_is_a_copy(self):
        self.open_position()

        self.bot.open_positions["BTC/USDT"].stop_loss_price = 0.0

        self.assertAlmostEqual(self.bot.open_positions["BTC/USDT"].stop_loss_price, 98.0)
        self.assertAlmostEqual(self.bot.current_exposure(), 5000.0)


class TestLivePositionLifecycle(unittest.TestCase):
    def setUp(self):
        config = BotConfig(mode=TradingMode.LIVE)
        config.exchange.api_key = "key"
        config.exchange.api_secret = "secret"

        self.client = FakeExchangeClient(last=100.0, report_fill=False)
        gateway = LiveExchangeGateway("okx", config.exchange, client=self.client)
        self.ledger = InMemoryLedger()
        self.bot = TradingBot(config, gateway=gateway, ledger=self.ledger)
        self.latest = make_feature_vector(atr_14=1.0, adx_14=60.0)

    def tick_at(self, price):
        self.client.last = price
        self.bot.check_open_positions()

    def test_fill_without_price_opens_at_market_and_trails(self):
        position = self.bot.execute_signal("BTC/USDT", buy_signal(), 100.0, self.latest)

        # 27 at risk over a 2.0 stop is 13.5 units, capped by 50% of 1500 to 7.5
        self.assertAlmostEqual(position.entry_price, 100.0)
        self.assertAlmostEqual(position.amount, 7.5)
        self.assertEqual(self.ledger.trades[0].mode, "LIVE")
        self.assertAlmostEqual(self.ledger.trades[0].price, 100.0)

        for price in (105.0, 104.0, 102.0):
            self.tick_at(price)
            self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.OPEN)

        self.tick_at(102.5)

        self.assertEqual(self.bot.position_state("BTC/USDT"), PositionState.NONE)
        closed = self.ledger.trades[-1]
        self.assertEqual(closed.reason, "TRAILING_STOP")
        self.assertAlmostEqual(closed.price, 102.5)
        self.assertAlmostEqual(closed.profit_loss, 18.75)
        self.assertEqual([o[2] for o in self.client.orders], ["buy", "sell"])


class TestConfiguration(unittest.TestCase):
    def test_live_without_credentials_fails(self):
        with self.assertRaises(ConfigurationError):
            TradingBot(BotConfig(mode=TradingMode.LIVE))

    def test_update_config(self):
        bot, _, _ = make_bot()

        bot.update_config(strategy=StrategyTier.AGGRESSIVE, max_risk_percentage=1.0)

        self.assertEqual(bot.decision_engine.min_confidence, 0.55)
        self.assertEqual(bot.risk_manager.policy.strategy, StrategyTier.AGGRESSIVE)
        self.assertEqual(bot.risk_manager.policy.max_risk_percentage, 1.0)
        self.assertEqual(bot.get_status().strategy, "AGGRESSIVE")

        with self.assertRaises(ConfigurationError):
            bot.update_config(max_risk_percentage=0)

    def test_synthetic_paper_gateway(self):
        config = BotConfig()
        config.exchange.use_synthetic_data = True

        bot = TradingBot(config)

        self.assertIsInstance(bot.gateway, SimulatedExchangeGateway)
        self.assertIsInstance(bot.gateway.market_data, SyntheticMarketData)

    def test_public_data_paper_gateway(self):
        bot = TradingBot(BotConfig())

        self.assertIsInstance(bot.gateway.market_data, LiveExchangeGateway)
        self.assertFalse(bot.gateway.market_data.authenticated)

    def test_both_mode_simulates_over_live_data(self):
        config = BotConfig(mode=TradingMode.BOTH)
        config.exchange.api_key = "key"
        config.exchange.api_secret = "secret"

        bot = TradingBot(config)

        self.assertEqual(bot.gateway.mode, "PAPER")
        self.assertIsInstance(bot.gateway.market_data, LiveExchangeGateway)
        self.assertTrue(bot.gateway.market_data.authenticated)

    def test_live_mode_uses_live_gateway(self):
        config = BotConfig(mode=TradingMode.LIVE)
        config.exchange.api_key = "key"
        config.exchange.api_secret = "secret"

        self.assertIsInstance(TradingBot(config).gateway, LiveExchangeGateway)


class TestScheduling(unittest.TestCase):
    def test_run_stops_after_max_ticks(self):
        bot, _, ledger = make_bot()

        self.assertEqual(bot.run(max_ticks=2), 2)

        self.assertEqual(bot.iteration, 2)
        self.assertFalse(bot.running)
        self.assertEqual(len(ledger.predictions), 6)

    def test_start_and_stop(self):
        bot, _, _ = make_bot()

        bot.start()
        bot.stop(timeout=60)

        self.assertFalse(bot._thread.is_alive())
        self.assertFalse(bot.running)

    def test_shutdown_disconnects(self):
        bot, _, _ = make_bot()
        bot.connect()
        bot.shutdown()
        self.assertFalse(bot.gateway.connected)


class TestMain(unittest.TestCase):
    def test_synthetic_paper_session(self):
        argv = ['--mode', 'paper', '--synthetic', '--instruments', 'BTC/USDT',
                '--ticks', '1', '--interval', '0.01', '--log-level', 'CRITICAL']

        with mock.patch('sys.stdout', new_callable=io.StringIO) as stdout:
            self.assertEqual(main(argv), 0)

        self.assertIn("SESSION SUMMARY", stdout.getvalue())
        self.assertIn("Ticks: 1", stdout.getvalue())

    @mock.patch.dict('os.environ', {}, clear=True)
    def test_live_without_credentials_exits_with_error(self):
        self.assertEqual(main(['--mode', 'live', '--log-level', 'CRITICAL']), 1)

    @mock.patch.dict('os.environ', {"OKX_API_KEY": "k", "OKX_API_SECRET": "s", "OKX_API_PASSWORD": "p"},
                     clear=True)
    def test_live_credentials_from_environment(self):
        gateways = []

        def offline_gateway(exchange_id, credentials=None):
            gateway = LiveExchangeGateway(exchange_id, credentials, client=FakeExchangeClient(last=100.0))
            gateways.append(gateway)
            return gateway

        argv = ['--mode', 'live', '--ticks', '1', '--interval', '0.01', '--log-level', 'CRITICAL']
        with mock.patch('crypto_trading.orchestrator.LiveExchangeGateway', side_effect=offline_gateway), \
                mock.patch('sys.stdout', new_callable=io.StringIO) as stdout:
            self.assertEqual(main(argv), 0)

        self.assertEqual(len(gateways), 1)
        self.assertTrue(gateways[0].authenticated)
        self.assertEqual(gateways[0].credentials.password, "p")
        self.assertIn("Mode: LIVE", stdout.getvalue())


if __name__ == "__main__":
    unittest.main()
