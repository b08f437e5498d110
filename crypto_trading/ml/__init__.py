"""
Ensemble Forecasting Module
===========================
"""
from .ensemble import (
    EnsembleForecaster,
    PredictionResult,
    ModelName,
    Predictor,
    PREDICTORS,
    reconstruct_prices
)

__all__ = [
    'EnsembleForecaster',
    'PredictionResult',
    'ModelName',
    'Predictor',
    'PREDICTORS',
    'reconstruct_prices'
]
