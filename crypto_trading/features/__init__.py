"""
Feature Engineering Module
==========================
"""
from .feature_engine import (
    FeatureEngine,
    FeatureVector,
    TechnicalIndicators,
    NORMALIZED_COLUMNS
)

__all__ = [
    'FeatureEngine',
    'FeatureVector',
    'TechnicalIndicators',
    'NORMALIZED_COLUMNS'
]
