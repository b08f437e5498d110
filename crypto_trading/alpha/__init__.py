"""
Decision Module
===============
"""
from .decision_engine import (
    DecisionEngine,
    TradingSignal,
    SignalAction,
    MIN_CONFIDENCE
)

__all__ = [
    'DecisionEngine',
    'TradingSignal',
    'SignalAction',
    'MIN_CONFIDENCE'
]
