"""
Monitoring Module
=================
"""
from .ledger import (
    Ledger,
    InMemoryLedger,
    JsonLinesLedger,
    PredictionRecord,
    TradeRecord
)

__all__ = [
    'Ledger',
    'InMemoryLedger',
    'JsonLinesLedger',
    'PredictionRecord',
    'TradeRecord'
]
