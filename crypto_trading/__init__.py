"""
Crypto Trading Bot
==================

An automated trading-decision engine for spot crypto instruments:

- Technical feature engineering (SMA/EMA, RSI, MACD, Stochastic, ATR, BB, ADX)
- Candle and chart pattern detection
- Six-model heuristic ensemble forecaster with online weight learning
- Weighted multi-factor BUY/SELL/HOLD decisions
- Strategy-tiered risk management with trailing stops
- Live (ccxt) and paper execution through one gateway interface

PIPELINE:
    ┌─────────┐
    │  DATA   │  ← OHLCV bars per timeframe
    └────┬────┘
         ↓
    ┌──────────────┐
    │ FEATURES     │  ← indicators, normalized matrix
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ PATTERNS     │  ← candle & chart formations
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ ENSEMBLE     │  ← price forecast per timeframe
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ DECISION     │  ← BUY / SELL / HOLD
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ RISK         │  ← sizing, gating, exits
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ EXECUTION    │  ← exchange gateway (live / paper)
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ LEDGER       │  ← predictions & trades
    └──────────────┘

USAGE:
    # Paper trading on offline synthetic data
    python -m crypto_trading.orchestrator --mode paper --synthetic --ticks 5

    # Paper trading on public exchange data
    crypto-trading-bot --mode paper --instruments BTC/USDT ETH/USDT --capital 10000

    # Programmatic usage
    from crypto_trading import TradingBot, BotConfig

    config = BotConfig()
    config.exchange.use_synthetic_data = True

    bot = TradingBot(config)
    bot.run(max_ticks=3)

MODULES:
    - data: Price bars and market data sources
    - features: Technical indicators and feature vectors
    - patterns: Candle and chart pattern detection
    - ml: Ensemble forecaster
    - alpha: Decision engine
    - risk: Risk manager
    - execution: Exchange gateways
    - monitoring: Ledger
"""

from .config import BotConfig, TradingMode, StrategyTier
from .exceptions import (
    TradingError,
    InsufficientDataError,
    InsufficientSequenceError,
    InsufficientBalanceError,
    GatewayError,
    ConfigurationError
)
from .orchestrator import TradingBot, BotStatus, OpenPosition, PositionState, main, setup_logging
from .data import PriceBar, MarketDataSource, SyntheticMarketData
from .features import FeatureEngine, FeatureVector
from .patterns import PatternDetector, CandlePattern, ChartPattern, PatternBias
from .ml import EnsembleForecaster, PredictionResult, ModelName
from .alpha import DecisionEngine, TradingSignal, SignalAction
from .risk import RiskManager, RiskPolicy, PositionSizing, ExitDecision, ExitReason
from .execution import ExchangeGateway, LiveExchangeGateway, SimulatedExchangeGateway, OrderReceipt, OrderSide
from .monitoring import Ledger, InMemoryLedger, JsonLinesLedger, PredictionRecord, TradeRecord

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingBot',
    'BotStatus',
    'OpenPosition',
    'PositionState',
    'BotConfig',
    'TradingMode',
    'StrategyTier',
    'main',
    'setup_logging',

    # Errors
    'TradingError',
    'InsufficientDataError',
    'InsufficientSequenceError',
    'InsufficientBalanceError',
    'GatewayError',
    'ConfigurationError',

    # Data
    'PriceBar',
    'MarketDataSource',
    'SyntheticMarketData',

    # Features
    'FeatureEngine',
    'FeatureVector',

    # Patterns
    'PatternDetector',
    'CandlePattern',
    'ChartPattern',
    'PatternBias',

    # Forecasting
    'EnsembleForecaster',
    'PredictionResult',
    'ModelName',

    # Decision
    'DecisionEngine',
    'TradingSignal',
    'SignalAction',

    # Risk
    'RiskManager',
    'RiskPolicy',
    'PositionSizing',
    'ExitDecision',
    'ExitReason',

    # Execution
    'ExchangeGateway',
    'LiveExchangeGateway',
    'SimulatedExchangeGateway',
    'OrderReceipt',
    'OrderSide',

    # Ledger
    'Ledger',
    'InMemoryLedger',
    'JsonLinesLedger',
    'PredictionRecord',
    'TradeRecord'
]
