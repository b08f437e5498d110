"""
Execution Module
================
"""
from .exchange_gateway import (
    ExchangeGateway,
    LiveExchangeGateway,
    SimulatedExchangeGateway,
    OrderReceipt,
    OrderSide
)

__all__ = [
    'ExchangeGateway',
    'LiveExchangeGateway',
    'SimulatedExchangeGateway',
    'OrderReceipt',
    'OrderSide'
]
