"""
Error Taxonomy
==============
Exceptions raised across the trading pipeline.

Propagation rules:
- InsufficientDataError aborts one instrument's tick
- InsufficientBalanceError aborts one trade attempt
- GatewayError is caught per instrument / per position
- ConfigurationError is fatal when the bot is constructed
"""


class TradingError(Exception):
    """Base class for all trading engine errors."""


class InsufficientDataError(TradingError):
    """Fewer bars than the indicators need."""


class InsufficientSequenceError(InsufficientDataError):
    """Fewer normalized rows than the forecaster lookback."""


class InsufficientBalanceError(TradingError):
    """Account balance too low for the requested order."""


class GatewayError(TradingError):
    """Network or exchange failure."""


class ConfigurationError(TradingError):
    """Invalid or incomplete configuration."""
