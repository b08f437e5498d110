"""
Pattern Detection Module
========================
"""
from .pattern_detector import (
    PatternDetector,
    CandlePattern,
    ChartPattern,
    PatternBias,
    PatternKind
)

__all__ = [
    'PatternDetector',
    'CandlePattern',
    'ChartPattern',
    'PatternBias',
    'PatternKind'
]
