"""
Exchange Gateway Module
=======================
Exchange connectivity for market data, balances and orders.

Two implementations share one interface:
- LiveExchangeGateway: a ccxt spot client (authenticated or public)
- SimulatedExchangeGateway: paper trading against a virtual balance
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from enum import Enum
import logging
import uuid

from ..data.market_data import MarketDataSource, PriceBar
from ..exceptions import ConfigurationError, GatewayError, InsufficientBalanceError

logger = logging.getLogger(__name__)


class OrderSide(Enum):
    """Order side."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> 'OrderSide':
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


@dataclass
class OrderReceipt:
    """Confirmation of an executed order."""
    order_id: str
    instrument: str
    side: OrderSide
    amount: float
    price: float
    cost: float
    status: str = "closed"
    simulated: bool = False
    timestamp: int = field(default_factory=lambda: int(datetime.now().timestamp() * 1000))

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'instrument': self.instrument,
            'side': self.side.value,
            'amount': self.amount,
            'price': self.price,
            'cost': self.cost,
            'status': self.status,
            'simulated': self.simulated,
            'timestamp': self.timestamp
        }


def split_instrument(instrument: str):
    """'BTC/USDT' -> ('BTC', 'USDT')."""
    parts = instrument.split('/')
    if len(parts) != 2 or not all(parts):
        raise GatewayError(f"Instrument must be BASE/QUOTE: {instrument}")
    return parts[0], parts[1]


class ExchangeGateway(MarketDataSource):
    """Abstract exchange: market data plus balances and orders."""

    @property
    @abstractmethod
    def mode(self) -> str:
        """'LIVE' or 'PAPER'."""
        pass

    @abstractmethod
    def connect(self) -> bool:
        """Establish connection to the exchange."""
        pass

    @abstractmethod
    def disconnect(self):
        """Disconnect from the exchange."""
        pass

    @abstractmethod
    def fetch_balance(self) -> Dict[str, float]:
        """Available balance per currency."""
        pass

    @abstractmethod
    def place_order(self, instrument: str, side: OrderSide, amount: float,
                    price: Optional[float] = None) -> OrderReceipt:
        """Place an order; market order when no price is given."""
        pass


class LiveExchangeGateway(ExchangeGateway):
    """
    ccxt spot exchange integration.

    Requires ccxt package: pip install ccxt

    Without credentials the gateway runs in public mode and only serves
    market data. Every exchange failure is raised as GatewayError.
    """

    def __init__(self, exchange_id: str = "okx", credentials=None, client=None):
        self.exchange_id = exchange_id
        self.credentials = credentials
        self.client = client
        self.connected = client is not None

    @property
    def mode(self) -> str:
        return "LIVE"

    @property
    def authenticated(self) -> bool:
        return self.credentials is not None and self.credentials.has_credentials

    def connect(self) -> bool:
        """Create the ccxt client."""
        if self.client is None:
            try:
                import ccxt
            except ImportError as e:
                raise GatewayError("ccxt not installed. Install with: pip install ccxt") from e

            exchange_class = getattr(ccxt, self.exchange_id, None)
            if exchange_class is None:
                raise ConfigurationError(f"Unknown exchange: {self.exchange_id}")

            params = {
                'enableRateLimit': True,
                'options': {'defaultType': 'spot'}
            }
            if self.authenticated:
                params.update({
                    'apiKey': self.credentials.api_key,
                    'secret': self.credentials.api_secret,
                    'password': self.credentials.password
                })
            self.client = exchange_class(params)

        self.connected = True
        access = "authenticated" if self.authenticated else "public"
        logger.info(f"Connected to {self.exchange_id} ({access})")
        return True

    def disconnect(self):
        self.connected = False
        self.client = None
        logger.info(f"Disconnected from {self.exchange_id}")

    def _call(self, method: str, *args, **kwargs):
        if not self.connected:
            self.connect()
        try:
            return getattr(self.client, method)(*args, **kwargs)
        except Exception as e:
            raise GatewayError(f"{self.exchange_id} {method} failed: {e}") from e

    def _require_credentials(self, operation: str):
        if not self.authenticated:
            raise ConfigurationError(f"{operation} requires exchange credentials")

    def fetch_bars(self, instrument: str, timeframe: str, limit: int) -> List[PriceBar]:
        rows = self._call('fetch_ohlcv', instrument, timeframe, None, limit)
        try:
            return [
                PriceBar(
                    timestamp=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5] or 0.0)
                )
                for row in rows
            ]
        except (TypeError, ValueError, IndexError) as e:
            raise GatewayError(f"Malformed OHLCV for {instrument} {timeframe}: {e}") from e

    def fetch_current_price(self, instrument: str) -> float:
        ticker = self._call('fetch_ticker', instrument)
        price = ticker.get('last') or ticker.get('close')
        if not price:
            raise GatewayError(f"No price in ticker for {instrument}")
        return float(price)

    def fetch_markets(self) -> List[str]:
        """Symbols of active spot markets."""
        markets = self._call('fetch_markets')
        return [m['symbol'] for m in markets if m.get('active') and m.get('spot')]

    def fetch_balance(self) -> Dict[str, float]:
        self._require_credentials("fetch_balance")
        balance = self._call('fetch_balance')
        return {
            currency: float(amount)
            for currency, amount in (balance.get('free') or {}).items()
            if amount
        }

    def place_order(self, instrument: str, side: OrderSide, amount: float,
                    price: Optional[float] = None) -> OrderReceipt:
        self._require_credentials("place_order")
        if amount <= 0:
            raise GatewayError(f"Invalid order amount: {amount}")

        order_type = 'limit' if price is not None else 'market'
        order = self._call('create_order', instrument, order_type, side.value, amount, price)

        fill_price = order.get('average') or order.get('price') or price
        if not fill_price:
            # Market order responses often carry only the id
            try:
                fill_price = self.fetch_current_price(instrument)
            except GatewayError as e:
                logger.warning(f"No fill price for order {order.get('id')}: {e}")
                fill_price = 0.0
        filled = order.get('filled') or amount
        receipt = OrderReceipt(
            order_id=str(order.get('id')),
            instrument=instrument,
            side=side,
            amount=float(filled),
            price=float(fill_price),
            cost=float(order.get('cost') or filled * fill_price),
            status=order.get('status') or 'open',
            simulated=False,
            timestamp=int(order.get('timestamp') or datetime.now().timestamp() * 1000)
        )
        logger.info(f"Order placed: {instrument} {side.value} {receipt.amount} @ {receipt.price} "
                    f"[{receipt.order_id}]")
        return receipt


class SimulatedExchangeGateway(ExchangeGateway):
    """
    Paper trading gateway.

    Market data comes from the wrapped source; orders settle immediately at
    the requested or current price against a virtual balance. Both legs are
    checked before either is changed, so a rejected order leaves balances
    untouched.
    """

    def __init__(self, market_data: MarketDataSource, initial_balance: float = 10000.0,
                 quote_currency: str = "USDT"):
        self.market_data = market_data
        self.initial_balance = initial_balance
        self.quote_currency = quote_currency
        self.balances: Dict[str, float] = {quote_currency: float(initial_balance)}
        self.orders: List[OrderReceipt] = []
        self.connected = False

    @property
    def mode(self) -> str:
        return "PAPER"

    def connect(self) -> bool:
        if isinstance(self.market_data, ExchangeGateway):
            self.market_data.connect()
        self.connected = True
        logger.info(f"Paper gateway connected, balance {self.initial_balance:,.2f} {self.quote_currency}")
        return True

    def disconnect(self):
        if isinstance(self.market_data, ExchangeGateway):
            self.market_data.disconnect()
        self.connected = False

    def fetch_bars(self, instrument: str, timeframe: str, limit: int) -> List[PriceBar]:
        return self.market_data.fetch_bars(instrument, timeframe, limit)

    def fetch_current_price(self, instrument: str) -> float:
        return self.market_data.fetch_current_price(instrument)

    def fetch_balance(self) -> Dict[str, float]:
        return dict(self.balances)

    def place_order(self, instrument: str, side: OrderSide, amount: float,
                    price: Optional[float] = None) -> OrderReceipt:
        if amount <= 0:
            raise GatewayError(f"Invalid order amount: {amount}")

        base, quote = split_instrument(instrument)
        fill_price = price if price is not None else self.market_data.fetch_current_price(instrument)
        if fill_price <= 0:
            raise GatewayError(f"Invalid order price: {fill_price}")

        cost = amount * fill_price
        base_balance = self.balances.get(base, 0.0)
        quote_balance = self.balances.get(quote, 0.0)

        if side == OrderSide.BUY:
            new_base, new_quote = base_balance + amount, quote_balance - cost
        else:
            new_base, new_quote = base_balance - amount, quote_balance + cost

        if new_quote < 0:
            raise InsufficientBalanceError(
                f"Insufficient {quote}: {quote_balance:,.8f} < {cost:,.8f}"
            )
        if new_base < 0:
            raise InsufficientBalanceError(
                f"Insufficient {base}: {base_balance:,.8f} < {amount:,.8f}"
            )

        self.balances[base] = new_base
        self.balances[quote] = new_quote

        receipt = OrderReceipt(
            order_id=f"PAPER_{uuid.uuid4().hex[:12]}",
            instrument=instrument,
            side=side,
            amount=amount,
            price=fill_price,
            cost=cost,
            status="closed",
            simulated=True
        )
        self.orders.append(receipt)

        logger.info(f"Paper order filled: {instrument} {side.value} {amount:.8f} @ {fill_price:.2f}")
        return receipt
