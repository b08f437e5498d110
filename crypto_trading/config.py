"""
Configuration Management
========================
Central configuration for the entire trading bot.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional
from enum import Enum
import json
import os

from .exceptions import ConfigurationError


class TradingMode(Enum):
    """Bot operation modes."""
    LIVE = "LIVE"
    PAPER = "PAPER"
    BOTH = "BOTH"


class StrategyTier(Enum):
    """Risk appetite of the strategy."""
    AGGRESSIVE = "AGGRESSIVE"
    MEDIUM = "MEDIUM"
    CONSERVATIVE = "CONSERVATIVE"


@dataclass
class ExchangeConfig:
    """Exchange connectivity configuration."""
    exchange_id: str = "okx"
    api_key: str = ""
    api_secret: str = ""
    password: str = ""

    # Paper trading
    initial_paper_balance: float = 10000.0
    quote_currency: str = "USDT"
    use_synthetic_data: bool = False  # Offline random-walk data instead of public API

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    @classmethod
    def from_env(cls, **overrides) -> 'ExchangeConfig':
        """Build from OKX_API_KEY / OKX_API_SECRET / OKX_API_PASSWORD."""
        config = cls(
            api_key=os.environ.get("OKX_API_KEY", ""),
            api_secret=os.environ.get("OKX_API_SECRET", ""),
            password=os.environ.get("OKX_API_PASSWORD", ""),
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config


@dataclass
class FeatureConfig:
    """Feature engineering configuration."""
    warmup_bars: int = 200
    bar_limit: int = 300  # Bars fetched per timeframe; needs warm-up + lookback

    # Timeframe roles
    main_timeframe: str = "1h"
    higher_timeframe: Optional[str] = "4h"
    lower_timeframe: Optional[str] = "15m"


@dataclass
class ForecastConfig:
    """Ensemble forecaster configuration."""
    sequence_length: int = 60
    learning_rate: float = 0.01
    min_weight: float = 0.05
    history_size: int = 100
    accuracy_window: int = 20
    smoothing: float = 0.4  # Share of current price in the final forecast

    # Initial model weights (must sum to 1.0)
    initial_weights: Dict[str, float] = field(default_factory=lambda: {
        "recency": 0.20,
        "blend": 0.20,
        "sliding_trend": 0.15,
        "attention": 0.20,
        "rule_based": 0.15,
        "trend_detection": 0.10
    })


@dataclass
class RiskConfig:
    """Risk manager configuration."""
    strategy: StrategyTier = StrategyTier.MEDIUM
    max_risk_percentage: float = 2.0  # % of balance risked per trade
    trailing_activation_pct: float = 2.0  # Profit % before trailing stop engages
    min_quote_balance: float = 10.0


@dataclass
class MonitoringConfig:
    """Logging and ledger configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    ledger_path: Optional[str] = None  # JSON lines file; in-memory if unset


@dataclass
class BotConfig:
    """Master bot configuration."""
    # Operating mode
    mode: TradingMode = TradingMode.PAPER

    # Universe
    instruments: List[str] = field(default_factory=lambda: ["BTC/USDT", "ETH/USDT"])
    timeframes: List[str] = field(default_factory=lambda: ["15m", "1h", "4h"])

    # Scheduling
    tick_interval_seconds: float = 60.0

    # Component configs
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def validate(self):
        """Raise ConfigurationError for settings the bot cannot start with."""
        if self.mode in (TradingMode.LIVE, TradingMode.BOTH) and not self.exchange.has_credentials:
            raise ConfigurationError(f"{self.mode.value} mode requires exchange credentials")

        if not self.instruments:
            raise ConfigurationError("At least one instrument is required")

        for instrument in self.instruments:
            if len(instrument.split('/')) != 2:
                raise ConfigurationError(f"Instrument must be BASE/QUOTE: {instrument}")

        if self.features.main_timeframe not in self.timeframes:
            raise ConfigurationError(
                f"Main timeframe {self.features.main_timeframe} not in {self.timeframes}"
            )

        if self.risk.max_risk_percentage <= 0:
            raise ConfigurationError("max_risk_percentage must be positive")

        if self.exchange.initial_paper_balance < 0:
            raise ConfigurationError("initial_paper_balance cannot be negative")

        if self.features.bar_limit < self.features.warmup_bars + self.forecast.sequence_length:
            raise ConfigurationError(
                f"bar_limit {self.features.bar_limit} is below warm-up + lookback "
                f"({self.features.warmup_bars + self.forecast.sequence_length})"
            )

        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("tick_interval_seconds must be positive")

    def save(self, filepath: str):
        """Save configuration to JSON file. Credentials are not written."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self._to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'BotConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls._from_dict(data)

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data['mode'] = self.mode.value
        data['risk']['strategy'] = self.risk.strategy.value
        for secret in ('api_key', 'api_secret', 'password'):
            data['exchange'].pop(secret, None)
        return data

    @classmethod
    def _from_dict(cls, data: dict) -> 'BotConfig':
        """Create from dictionary."""
        config = cls()
        config.mode = TradingMode(data.get('mode', 'PAPER'))
        config.instruments = list(data.get('instruments', config.instruments))
        config.timeframes = list(data.get('timeframes', config.timeframes))
        config.tick_interval_seconds = data.get('tick_interval_seconds', config.tick_interval_seconds)

        config.exchange = ExchangeConfig.from_env(**data.get('exchange', {}))
        config.features = FeatureConfig(**data.get('features', {}))
        config.forecast = ForecastConfig(**data.get('forecast', {}))

        risk = dict(data.get('risk', {}))
        if 'strategy' in risk:
            risk['strategy'] = StrategyTier(risk['strategy'])
        config.risk = RiskConfig(**risk)

        config.monitoring = MonitoringConfig(**data.get('monitoring', {}))
        return config


# Default configuration instance
DEFAULT_CONFIG = BotConfig()
