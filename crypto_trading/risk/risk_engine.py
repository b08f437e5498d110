"""
Risk Engine Module
==================
Position sizing, entry gating and exit rules per strategy tier.

Core principle: risk rules are enforced algorithmically; the strategy tier
only changes the parameters, never the rules.
"""

from dataclasses import dataclass
from typing import Dict, Optional
from enum import Enum
import logging

from ..config import StrategyTier
from ..execution.exchange_gateway import OrderSide

logger = logging.getLogger(__name__)


# Unrealized profit (%) required before the trailing stop engages
DEFAULT_TRAILING_ACTIVATION_PCT = 2.0


@dataclass(frozen=True)
class TierParameters:
    """Risk parameters of one strategy tier."""
    risk_multiplier: float
    atr_stop_multiplier: float
    reward_ratio: float
    min_confidence: float
    max_volatility: float
    min_trend_strength: float
    trailing_stop_pct: float
    max_exposure: float  # Fraction of balance


TIER_PARAMETERS: Dict[StrategyTier, TierParameters] = {
    StrategyTier.AGGRESSIVE: TierParameters(
        risk_multiplier=1.5,
        atr_stop_multiplier=2.5,
        reward_ratio=3.0,
        min_confidence=0.55,
        max_volatility=0.05,
        min_trend_strength=0.3,
        trailing_stop_pct=3.0,
        max_exposure=0.8
    ),
    StrategyTier.MEDIUM: TierParameters(
        risk_multiplier=1.0,
        atr_stop_multiplier=2.0,
        reward_ratio=2.0,
        min_confidence=0.65,
        max_volatility=0.04,
        min_trend_strength=0.5,
        trailing_stop_pct=2.0,
        max_exposure=0.5
    ),
    StrategyTier.CONSERVATIVE: TierParameters(
        risk_multiplier=0.6,
        atr_stop_multiplier=1.5,
        reward_ratio=1.5,
        min_confidence=0.75,
        max_volatility=0.03,
        min_trend_strength=0.7,
        trailing_stop_pct=1.0,
        max_exposure=0.3
    ),
}


@dataclass
class RiskPolicy:
    """Active risk policy."""
    strategy: StrategyTier = StrategyTier.MEDIUM
    max_risk_percentage: float = 2.0  # Percent of balance, e.g. 2.0 = 2%


@dataclass
class PositionSizing:
    """Position sizing result from the risk manager."""
    amount: float
    stop_loss_price: float
    take_profit_price: float
    risk_amount: float
    potential_profit: float
    risk_percentage: float
    stop_distance: float

    def to_dict(self) -> dict:
        return {
            'amount': self.amount,
            'stop_loss_price': self.stop_loss_price,
            'take_profit_price': self.take_profit_price,
            'risk_amount': self.risk_amount,
            'potential_profit': self.potential_profit,
            'risk_percentage': self.risk_percentage,
            'stop_distance': self.stop_distance
        }


class ExitReason(Enum):
    """Why a position is closed."""
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"


@dataclass
class ExitDecision:
    """Exit check result."""
    close: bool
    reason: Optional[ExitReason] = None


class RiskManager:
    """
    Sizes positions, gates entries and decides exits.

    Exposure limits are advisory: `max_exposure` reports the cap and the
    caller is responsible for enforcing it.
    """

    def __init__(self, policy: Optional[RiskPolicy] = None,
                 trailing_activation_pct: float = DEFAULT_TRAILING_ACTIVATION_PCT):
        self._policy = policy or RiskPolicy()
        self.trailing_activation_pct = trailing_activation_pct

    @property
    def policy(self) -> RiskPolicy:
        return RiskPolicy(self._policy.strategy, self._policy.max_risk_percentage)

    @property
    def parameters(self) -> TierParameters:
        return TIER_PARAMETERS[self._policy.strategy]

    def update_policy(self, strategy: Optional[StrategyTier] = None,
                      max_risk_percentage: Optional[float] = None):
        """Replace parts of the active policy."""
        if strategy is not None:
            self._policy.strategy = strategy
        if max_risk_percentage is not None:
            self._policy.max_risk_percentage = max_risk_percentage
        logger.info(f"Risk policy: {self._policy.strategy.value}, "
                    f"max risk {self._policy.max_risk_percentage}%")

    def size_position(self, balance: float, entry_price: float, volatility: float,
                      forecast_confidence: float, side: OrderSide = OrderSide.BUY) -> PositionSizing:
        """
        Size a position so that hitting the stop loses `risk_amount`.

        Args:
            balance: Available quote balance
            entry_price: Expected fill price
            volatility: Absolute price volatility (ATR)
            forecast_confidence: Signal confidence, scales the risk taken
            side: BUY places the stop below entry, SELL above

        Returns:
            PositionSizing; zero amount when the stop distance is not positive
        """
        params = self.parameters
        risk_percentage = self._policy.max_risk_percentage * params.risk_multiplier * forecast_confidence
        risk_amount = balance * risk_percentage / 100

        stop_distance = volatility * params.atr_stop_multiplier
        if stop_distance <= 0:
            logger.warning(f"Non-positive stop distance {stop_distance} "
                           f"(volatility={volatility}), sizing to zero")
            return PositionSizing(
                amount=0.0,
                stop_loss_price=entry_price,
                take_profit_price=entry_price,
                risk_amount=risk_amount,
                potential_profit=0.0,
                risk_percentage=risk_percentage,
                stop_distance=stop_distance
            )

        target_distance = stop_distance * params.reward_ratio
        if side == OrderSide.BUY:
            stop_loss_price = entry_price - stop_distance
            take_profit_price = entry_price + target_distance
        else:
            stop_loss_price = entry_price + stop_distance
            take_profit_price = entry_price - target_distance

        amount = risk_amount / stop_distance

        return PositionSizing(
            amount=amount,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            risk_amount=risk_amount,
            potential_profit=amount * target_distance,
            risk_percentage=risk_percentage,
            stop_distance=stop_distance
        )

    def should_enter(self, confidence: float, normalized_volatility: float,
                     trend_strength: float) -> bool:
        params = self.parameters
        return (
            confidence >= params.min_confidence and
            normalized_volatility <= params.max_volatility and
            trend_strength >= params.min_trend_strength
        )

    def should_exit(self, entry_price: float, current_price: float, highest_price_seen: float,
                    stop_loss_price: float, side: OrderSide = OrderSide.BUY,
                    lowest_price_seen: Optional[float] = None) -> ExitDecision:
        """
        Check stop-loss first, then the trailing stop.

        For long positions the pullback is measured from the highest price
        seen; for short positions, from the lowest.
        """
        if side == OrderSide.BUY:
            if current_price <= stop_loss_price:
                return ExitDecision(True, ExitReason.STOP_LOSS)
            profit_pct = (current_price - entry_price) / entry_price * 100
            extreme = max(highest_price_seen, current_price)
            pullback_pct = (extreme - current_price) / extreme * 100
        else:
            if current_price >= stop_loss_price:
                return ExitDecision(True, ExitReason.STOP_LOSS)
            profit_pct = (entry_price - current_price) / entry_price * 100
            extreme = current_price if lowest_price_seen is None else min(lowest_price_seen, current_price)
            pullback_pct = (current_price - extreme) / extreme * 100

        if profit_pct > self.trailing_activation_pct and pullback_pct > self.parameters.trailing_stop_pct:
            return ExitDecision(True, ExitReason.TRAILING_STOP)

        return ExitDecision(False)

    def max_exposure(self, balance: float) -> float:
        """Largest total position notional the tier allows."""
        return balance * self.parameters.max_exposure
