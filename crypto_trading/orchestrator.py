"""
Trading Bot Orchestrator
========================
Main pipeline orchestrating all components:
    DATA → FEATURES → PATTERNS → ENSEMBLE → DECISION → RISK → EXECUTION → LEDGER

Each tick processes every instrument sequentially, then re-evaluates all
open positions for exit. A failure in one instrument is logged and the tick
moves on; nothing escapes a tick.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional
from enum import Enum
import logging
import os
import threading

from .config import BotConfig, ExchangeConfig, StrategyTier, TradingMode
from .data import SyntheticMarketData
from .exceptions import (
    ConfigurationError,
    InsufficientBalanceError,
    InsufficientDataError,
    TradingError
)
from .features import FeatureEngine, FeatureVector
from .patterns import PatternDetector
from .ml import EnsembleForecaster, PredictionResult
from .alpha import DecisionEngine, SignalAction, TradingSignal
from .risk import ExitReason, RiskManager, RiskPolicy
from .execution import (
    ExchangeGateway,
    LiveExchangeGateway,
    OrderSide,
    SimulatedExchangeGateway
)
from .monitoring import InMemoryLedger, JsonLinesLedger, Ledger, PredictionRecord, TradeRecord

logger = logging.getLogger(__name__)


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


class PositionState(Enum):
    """Lifecycle of a position per instrument."""
    NONE = "NONE"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass
class OpenPosition:
    """A position held by the bot."""
    instrument: str
    side: OrderSide
    entry_price: float
    amount: float
    stop_loss_price: float
    take_profit_price: float
    highest_price_seen: float
    lowest_price_seen: float
    order_reference: str
    opened_at: int = field(default_factory=now_ms)
    state: PositionState = PositionState.OPEN

    @property
    def notional(self) -> float:
        return self.amount * self.entry_price

    def profit_loss(self, exit_price: float) -> float:
        if self.side == OrderSide.BUY:
            return (exit_price - self.entry_price) * self.amount
        return (self.entry_price - exit_price) * self.amount


@dataclass
class BotStatus:
    """Snapshot of the bot."""
    running: bool
    mode: str
    strategy: str
    balance: Dict[str, float]
    open_positions: int
    total_trades: int
    profit_loss: float
    predictions: Dict[str, Dict[str, PredictionResult]]
    model_weights: Dict[str, float]
    model_accuracy: Dict[str, float]
    iteration: int
    last_update: Optional[int]

    def to_dict(self) -> dict:
        return {
            'running': self.running,
            'mode': self.mode,
            'strategy': self.strategy,
            'balance': dict(self.balance),
            'open_positions': self.open_positions,
            'total_trades': self.total_trades,
            'profit_loss': self.profit_loss,
            'predictions': {
                instrument: {tf: p.to_dict() for tf, p in by_tf.items()}
                for instrument, by_tf in self.predictions.items()
            },
            'model_weights': dict(self.model_weights),
            'model_accuracy': dict(self.model_accuracy),
            'iteration': self.iteration,
            'last_update': self.last_update
        }


class TradingBot:
    """
    Position lifecycle controller.

    Coordinates the pipeline per instrument:
    1. DATA: Fetch bars for every configured timeframe
    2. FEATURES: Indicators on the main timeframe, enriched by higher/lower
    3. ENSEMBLE: One forecast per timeframe
    4. PATTERNS: Candle and chart patterns on main timeframe bars
    5. DECISION: BUY/SELL/HOLD from all factors
    6. RISK: Sizing, entry gating, exposure cap
    7. EXECUTION: Orders via the exchange gateway
    8. LEDGER: Predictions and trades

    Owns the open positions; a position moves NONE -> OPEN -> CLOSED and at
    most one is open per instrument.
    """

    def __init__(self, config: BotConfig = None, gateway: ExchangeGateway = None,
                 ledger: Ledger = None, forecaster: EnsembleForecaster = None):
        self.config = config or BotConfig()
        self.config.validate()

        self.gateway = gateway or self._build_gateway()
        self.ledger = ledger or self._build_ledger()

        self.feature_engine = FeatureEngine(config=self.config.features)
        self.pattern_detector = PatternDetector()
        self.forecaster = forecaster or EnsembleForecaster(config=self.config.forecast)
        self.decision_engine = DecisionEngine(self.config.risk.strategy)
        self.risk_manager = RiskManager(
            RiskPolicy(self.config.risk.strategy, self.config.risk.max_risk_percentage),
            trailing_activation_pct=self.config.risk.trailing_activation_pct
        )

        # Bot state
        self.running = False
        self.iteration = 0
        self.last_update: Optional[int] = None
        self.predictions: Dict[str, Dict[str, PredictionResult]] = {}
        self.closed_trades = 0
        self.realized_pnl = 0.0

        self._positions: Dict[str, OpenPosition] = {}
        self._connected = False
        self._tick_in_progress = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(f"TradingBot initialized in {self.config.mode.value} mode "
                    f"({self.gateway.mode} execution), strategy {self.config.risk.strategy.value}")

    def _build_gateway(self) -> ExchangeGateway:
        """Select the gateway for the configured mode."""
        exchange = self.config.exchange
        mode = self.config.mode

        if mode == TradingMode.LIVE:
            return LiveExchangeGateway(exchange.exchange_id, credentials=exchange)

        if mode == TradingMode.BOTH:
            market_data = LiveExchangeGateway(exchange.exchange_id, credentials=exchange)
        elif exchange.use_synthetic_data:
            market_data = SyntheticMarketData()
        else:
            market_data = LiveExchangeGateway(exchange.exchange_id)

        return SimulatedExchangeGateway(
            market_data,
            initial_balance=exchange.initial_paper_balance,
            quote_currency=exchange.quote_currency
        )

    def _build_ledger(self) -> Ledger:
        path = self.config.monitoring.ledger_path
        return JsonLinesLedger(path) if path else InMemoryLedger()

    # =====================
    # Lifecycle
    # =====================

    def connect(self):
        """Connect the gateway. Failures are fatal."""
        self.gateway.connect()
        self._connected = True

    def run_tick(self) -> bool:
        """
        Run one complete tick.

        Returns:
            False when another tick was still in progress and this one was skipped
        """
        if self._tick_in_progress:
            logger.warning("Tick already in progress, skipping")
            return False

        self._tick_in_progress = True
        try:
            self.iteration += 1
            logger.debug(f"=== Tick {self.iteration} ===")

            for instrument in self.config.instruments:
                try:
                    self.process_instrument(instrument)
                except InsufficientDataError as e:
                    logger.warning(f"Skipping {instrument}: {e}")
                except Exception as e:
                    logger.error(f"Processing failed for {instrument}: {e}")

            self.check_open_positions()
            self.last_update = now_ms()
        finally:
            self._tick_in_progress = False
        return True

    def process_instrument(self, instrument: str) -> TradingSignal:
        """Run the pipeline for one instrument and act on its signal."""
        features_config = self.config.features
        main_tf = features_config.main_timeframe

        # 1. DATA
        bars_by_timeframe = {
            tf: self.gateway.fetch_bars(instrument, tf, features_config.bar_limit)
            for tf in self.config.timeframes
        }
        main_bars = bars_by_timeframe[main_tf]

        # 2. FEATURES
        main_features = self.feature_engine.compute_features(
            main_bars,
            higher_timeframe_bars=bars_by_timeframe.get(features_config.higher_timeframe),
            lower_timeframe_bars=bars_by_timeframe.get(features_config.lower_timeframe)
        )
        main_normalized = self.feature_engine.normalize(main_features)

        # 3. ENSEMBLE
        current_price = self.gateway.fetch_current_price(instrument)
        predictions = {}
        for tf, bars in bars_by_timeframe.items():
            if tf == main_tf:
                normalized = main_normalized
            else:
                normalized = self.feature_engine.normalize(self.feature_engine.compute_features(bars))
            prediction = self.forecaster.predict(normalized, current_price, tf)
            predictions[tf] = prediction
            self._record_prediction(instrument, prediction)
        self.predictions[instrument] = predictions

        # 4. PATTERNS
        candle_patterns = self.pattern_detector.detect_candle_patterns(main_bars)
        chart_patterns = self.pattern_detector.detect_chart_patterns(main_bars)

        # 5. DECISION
        alignment = self.decision_engine.check_multi_timeframe_alignment(predictions, current_price)
        latest = main_features[-1]
        signal = self.decision_engine.decide(
            predictions[main_tf],
            candle_patterns,
            chart_patterns,
            latest,
            current_price,
            alignment
        )
        logger.info(f"{instrument}: {signal.action.value} (confidence {signal.confidence:.0%}) "
                    f"- {'; '.join(signal.reasons)}")

        # Online learning on main timeframe history, independent of execution
        self.forecaster.train_on_history(main_normalized, [f.close for f in main_features])

        # 6-7. RISK and EXECUTION
        if signal.action != SignalAction.HOLD:
            self.execute_signal(instrument, signal, current_price, latest)

        return signal

    def execute_signal(self, instrument: str, signal: TradingSignal, current_price: float,
                       latest: FeatureVector) -> Optional[OpenPosition]:
        """Try to open a position for a BUY/SELL signal."""
        if self.position_state(instrument) == PositionState.OPEN:
            logger.debug(f"Position already open for {instrument}, skipping")
            return None

        side = OrderSide.BUY if signal.action == SignalAction.BUY else OrderSide.SELL
        quote = instrument.split('/')[1]

        available = self.gateway.fetch_balance().get(quote, 0.0)
        if available < self.config.risk.min_quote_balance:
            logger.warning(f"Insufficient balance for {instrument}: {available:.2f} {quote}")
            return None

        sizing = self.risk_manager.size_position(
            available, current_price, latest.atr_14, signal.confidence, side
        )
        if sizing.amount <= 0:
            logger.warning(f"Zero position size for {instrument}, skipping")
            return None

        if not self.risk_manager.should_enter(signal.confidence, latest.atr_14 / current_price,
                                              latest.adx_14 / 100):
            logger.info(f"Entry gate rejected {instrument} {signal.action.value} "
                        f"(ATR {latest.atr_14:.4f}, ADX {latest.adx_14:.1f})")
            return None

        # Exposure cap is enforced here, not in the risk manager
        room = self.risk_manager.max_exposure(available) - self.current_exposure()
        if room <= 0:
            logger.warning(f"Max exposure reached, skipping {instrument}")
            return None
        amount = min(sizing.amount, room / current_price)

        try:
            receipt = self.gateway.place_order(instrument, side, amount)
        except InsufficientBalanceError as e:
            logger.warning(f"Order rejected for {instrument}: {e}")
            return None

        entry_price = receipt.price or current_price

        position = OpenPosition(
            instrument=instrument,
            side=side,
            entry_price=entry_price,
            amount=receipt.amount,
            stop_loss_price=sizing.stop_loss_price,
            take_profit_price=sizing.take_profit_price,
            highest_price_seen=entry_price,
            lowest_price_seen=entry_price,
            order_reference=receipt.order_id
        )
        self._positions[instrument] = position

        logger.info(f"Opened {side.value.upper()} {instrument}: {position.amount:.8f} @ "
                    f"{position.entry_price:.2f} (SL {position.stop_loss_price:.2f}, "
                    f"TP {position.take_profit_price:.2f})")

        self._record_trade(TradeRecord(
            instrument=instrument,
            side=signal.action.value,
            price=position.entry_price,
            amount=position.amount,
            mode=self.gateway.mode,
            status=PositionState.OPEN.value,
            created_at=position.opened_at,
            order_id=receipt.order_id
        ))
        return position

    def check_open_positions(self):
        """Update price extremes and close positions whose exit rule fires."""
        for instrument, position in list(self._positions.items()):
            try:
                current_price = self.gateway.fetch_current_price(instrument)

                position.highest_price_seen = max(position.highest_price_seen, current_price)
                position.lowest_price_seen = min(position.lowest_price_seen, current_price)

                decision = self.risk_manager.should_exit(
                    position.entry_price,
                    current_price,
                    position.highest_price_seen,
                    position.stop_loss_price,
                    side=position.side,
                    lowest_price_seen=position.lowest_price_seen
                )
                if decision.close:
                    self._close_position(position, current_price, decision.reason)

            except Exception as e:
                logger.error(f"Position check failed for {instrument}: {e}")

    def _close_position(self, position: OpenPosition, current_price: float, reason: ExitReason):
        receipt = self.gateway.place_order(position.instrument, position.side.opposite, position.amount)
        exit_price = receipt.price or current_price
        pnl = position.profit_loss(exit_price)

        position.state = PositionState.CLOSED
        del self._positions[position.instrument]
        self.closed_trades += 1
        self.realized_pnl += pnl

        logger.info(f"Closed {position.instrument} ({reason.value}) @ {exit_price:.2f}, P/L: {pnl:,.2f}")

        self._record_trade(TradeRecord(
            instrument=position.instrument,
            side=SignalAction.BUY.value if position.side == OrderSide.BUY else SignalAction.SELL.value,
            price=exit_price,
            amount=position.amount,
            mode=self.gateway.mode,
            status=PositionState.CLOSED.value,
            created_at=position.opened_at,
            closed_at=now_ms(),
            profit_loss=pnl,
            reason=reason.value,
            order_id=receipt.order_id
        ))

    # =====================
    # Ledger
    # =====================

    def _record_prediction(self, instrument: str, prediction: PredictionResult):
        try:
            self.ledger.record_prediction(PredictionRecord(
                instrument=instrument,
                timeframe=prediction.timeframe,
                predicted_price=prediction.predicted_price,
                confidence=prediction.confidence,
                created_at=prediction.timestamp,
                closes_at=prediction.closes_at
            ))
        except Exception as e:
            logger.warning(f"Failed to record prediction for {instrument}: {e}")

    def _record_trade(self, record: TradeRecord):
        try:
            self.ledger.record_trade(record)
        except Exception as e:
            logger.warning(f"Failed to record trade for {record.instrument}: {e}")

    # =====================
    # Scheduling
    # =====================

    def run(self, max_ticks: Optional[int] = None) -> int:
        """
        Main loop: tick, then wait for the interval or a stop.

        Returns:
            Number of ticks run
        """
        self._stop_event.clear()
        return self._loop(max_ticks)

    def _loop(self, max_ticks: Optional[int]) -> int:
        self.running = True
        if not self._connected:
            self.connect()

        logger.info(f"Starting main loop, interval {self.config.tick_interval_seconds}s")

        ticks = 0
        try:
            while not self._stop_event.is_set():
                self.run_tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                if self._stop_event.wait(self.config.tick_interval_seconds):
                    break
        finally:
            self.running = False

        logger.info(f"Main loop stopped after {ticks} ticks")
        return ticks

    def start(self, max_ticks: Optional[int] = None):
        """Run the main loop in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Bot is already running")
            return
        self.running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(max_ticks,), name="trading-bot", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Signal the loop to stop; the in-flight tick completes."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("Bot stopped")

    def shutdown(self):
        """Stop and disconnect."""
        self.stop()
        if self._connected:
            self.gateway.disconnect()
            self._connected = False

    # =====================
    # Introspection and reconfiguration
    # =====================

    def update_config(self, strategy: Optional[StrategyTier] = None,
                      max_risk_percentage: Optional[float] = None):
        """Change strategy and/or risk per trade while running."""
        if max_risk_percentage is not None and max_risk_percentage <= 0:
            raise ConfigurationError("max_risk_percentage must be positive")

        if strategy is not None:
            self.config.risk.strategy = strategy
            self.decision_engine.update_strategy(strategy)
        if max_risk_percentage is not None:
            self.config.risk.max_risk_percentage = max_risk_percentage
        self.risk_manager.update_policy(strategy=strategy, max_risk_percentage=max_risk_percentage)

    def position_state(self, instrument: str) -> PositionState:
        position = self._positions.get(instrument)
        return position.state if position else PositionState.NONE

    @property
    def open_positions(self) -> Dict[str, OpenPosition]:
        return {instrument: replace(p) for instrument, p in self._positions.items()}

    def current_exposure(self) -> float:
        return sum(p.notional for p in self._positions.values())

    def get_status(self) -> BotStatus:
        """Get bot status."""
        try:
            balance = self.gateway.fetch_balance()
        except TradingError as e:
            logger.warning(f"Balance unavailable: {e}")
            balance = {}

        return BotStatus(
            running=self.running,
            mode=self.config.mode.value,
            strategy=self.risk_manager.policy.strategy.value,
            balance=balance,
            open_positions=len(self._positions),
            total_trades=self.closed_trades,
            profit_loss=self.realized_pnl,
            predictions={i: dict(p) for i, p in self.predictions.items()},
            model_weights={m.value: w for m, w in self.forecaster.get_model_weights().items()},
            model_accuracy={m.value: a for m, a in self.forecaster.get_model_accuracy().items()},
            iteration=self.iteration,
            last_update=self.last_update
        )


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging, optionally also to a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the trading bot."""
    import argparse

    parser = argparse.ArgumentParser(description='Crypto Trading Bot')
    parser.add_argument('--mode', choices=['live', 'paper', 'both'],
                        help='Trading mode')
    parser.add_argument('--strategy', choices=['aggressive', 'medium', 'conservative'],
                        help='Strategy tier')
    parser.add_argument('--risk', type=float, help='Max risk per trade, percent of balance')
    parser.add_argument('--instruments', nargs='+', help='Instruments, e.g. BTC/USDT ETH/USDT')
    parser.add_argument('--timeframes', nargs='+', help='Timeframes, e.g. 15m 1h 4h')
    parser.add_argument('--interval', type=float, help='Seconds between ticks')
    parser.add_argument('--capital', type=float, help='Initial paper balance')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--synthetic', action='store_true',
                        help='Use offline synthetic market data in paper mode')
    parser.add_argument('--ticks', type=int, help='Stop after this many ticks')
    parser.add_argument('--ledger', type=str, help='JSON lines ledger file')
    parser.add_argument('--log-level', default=None, help='Logging level')

    args = parser.parse_args(argv)

    # Create configuration; credentials come from the environment
    if args.config:
        config = BotConfig.load(args.config)
    else:
        config = BotConfig(exchange=ExchangeConfig.from_env())
    if args.mode:
        config.mode = TradingMode(args.mode.upper())
    if args.strategy:
        config.risk.strategy = StrategyTier(args.strategy.upper())
    if args.risk is not None:
        config.risk.max_risk_percentage = args.risk
    if args.instruments:
        config.instruments = args.instruments
    if args.timeframes:
        config.timeframes = args.timeframes
    if args.interval is not None:
        config.tick_interval_seconds = args.interval
    if args.capital is not None:
        config.exchange.initial_paper_balance = args.capital
    if args.synthetic:
        config.exchange.use_synthetic_data = True
    if args.ledger:
        config.monitoring.ledger_path = args.ledger
    if args.log_level:
        config.monitoring.log_level = args.log_level

    # Configure logging
    setup_logging(config.monitoring.log_level, config.monitoring.log_file)

    try:
        bot = TradingBot(config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    exit_code = 0
    try:
        bot.connect()
        bot.run(max_ticks=args.ticks)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except TradingError as e:
        logger.error(f"Bot failed: {e}")
        exit_code = 1
    finally:
        print_summary(bot.get_status())
        bot.shutdown()

    return exit_code


def print_summary(status: BotStatus):
    print("\n" + "=" * 50)
    print("SESSION SUMMARY")
    print("=" * 50)
    print(f"Mode: {status.mode} | Strategy: {status.strategy}")
    print(f"Ticks: {status.iteration}")
    print(f"Open positions: {status.open_positions}")
    print(f"Closed trades: {status.total_trades}")
    print(f"Realized P/L: {status.profit_loss:,.2f}")
    for currency, amount in sorted(status.balance.items()):
        print(f"Balance {currency}: {amount:,.8f}")


if __name__ == "__main__":
    raise SystemExit(main())
