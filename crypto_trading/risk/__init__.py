"""
Risk Management Module
======================
"""
from .risk_engine import (
    RiskManager,
    RiskPolicy,
    PositionSizing,
    ExitDecision,
    ExitReason,
    TierParameters,
    TIER_PARAMETERS,
    DEFAULT_TRAILING_ACTIVATION_PCT
)

__all__ = [
    'RiskManager',
    'RiskPolicy',
    'PositionSizing',
    'ExitDecision',
    'ExitReason',
    'TierParameters',
    'TIER_PARAMETERS',
    'DEFAULT_TRAILING_ACTIVATION_PCT'
]
