"""
Ledger Module
=============
Append-only records of predictions and trades.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional
import json
import logging
import os

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


@dataclass
class PredictionRecord:
    """One forecast as issued."""
    instrument: str
    timeframe: str
    predicted_price: float
    confidence: float
    created_at: int
    closes_at: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TradeRecord:
    """One trade event: an opened or a closed position."""
    instrument: str
    side: str
    price: float
    amount: float
    mode: str  # LIVE or PAPER
    status: str  # OPEN or CLOSED
    created_at: int
    closed_at: Optional[int] = None
    profit_loss: Optional[float] = None
    reason: Optional[str] = None
    order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class Ledger(ABC):
    """Persistence collaborator. Writes are append-only."""

    @abstractmethod
    def record_prediction(self, record: PredictionRecord):
        pass

    @abstractmethod
    def record_trade(self, record: TradeRecord):
        pass


class InMemoryLedger(Ledger):
    """Keeps records in lists."""

    def __init__(self):
        self.predictions: List[PredictionRecord] = []
        self.trades: List[TradeRecord] = []

    def record_prediction(self, record: PredictionRecord):
        self.predictions.append(record)

    def record_trade(self, record: TradeRecord):
        self.trades.append(record)


class JsonLinesLedger(Ledger):
    """
    Writes one JSON object per line.

    Every line carries a `type` field ('prediction' or 'trade') so both
    record kinds can share one file.
    """

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _append(self, kind: str, data: dict):
        with open(self.path, 'a') as f:
            f.write(json.dumps({'type': kind, **data}) + '\n')

    def record_prediction(self, record: PredictionRecord):
        self._append('prediction', record.to_dict())

    def record_trade(self, record: TradeRecord):
        self._append('trade', record.to_dict())

    def read_records(self, kind: Optional[str] = None) -> List[dict]:
        """Load written records, optionally of one kind."""
        if not os.path.exists(self.path):
            return []
        records = []
        with open(self.path, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                if kind is None or data.get('type') == kind:
                    records.append(data)
        return records
